"""Pure domain layer: value objects, state machine, protocols. Zero I/O."""
