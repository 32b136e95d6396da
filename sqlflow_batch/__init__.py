"""
sqlflow_batch -- Background scheduling for the workflow engine.

Runs the due-scan (execute workflows whose scheduled time has passed) and
the expiry-scan (delete old finished / canceled workflows) inside the
application process.

Architecture:
    sqlflow_batch/ is a top-level package.  Nothing in sqlflow_kernel
    imports from sqlflow_batch.
"""
