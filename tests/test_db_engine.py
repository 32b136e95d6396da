"""Tests for engine initialisation and the transactional session scope."""

import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from sqlflow_kernel.db import engine as db_engine
from sqlflow_kernel.db.engine import session_scope
from sqlflow_kernel.exceptions import OperationCancelledError
from sqlflow_kernel.models.identity import UserModel


@pytest.fixture
def global_engine(tmp_path):
    """Module-level engine on a throwaway SQLite file."""
    db_engine.init_engine_from_url(f"sqlite:///{tmp_path / 'engine.db'}")
    db_engine.create_tables()
    yield db_engine.get_engine()
    db_engine.reset_engine()


@pytest.fixture
def factory(file_engine):
    return sessionmaker(bind=file_engine)


def _count_users(factory) -> int:
    session = factory()
    try:
        return session.execute(select(func.count(UserModel.id))).scalar_one()
    finally:
        session.close()


class TestSessionScope:
    def test_commits_on_success(self, factory):
        with session_scope(factory) as session:
            session.add(UserModel(name="alice"))
        assert _count_users(factory) == 1

    def test_rolls_back_on_error(self, factory):
        with pytest.raises(RuntimeError):
            with session_scope(factory) as session:
                session.add(UserModel(name="alice"))
                session.flush()
                raise RuntimeError("abort")
        assert _count_users(factory) == 0

    def test_cancel_rolls_back(self, factory):
        cancel = threading.Event()
        with pytest.raises(OperationCancelledError):
            with session_scope(factory, cancel=cancel) as session:
                session.add(UserModel(name="alice"))
                session.flush()
                cancel.set()
        assert _count_users(factory) == 0

    def test_unset_cancel_commits(self, factory):
        with session_scope(factory, cancel=threading.Event()) as session:
            session.add(UserModel(name="alice"))
        assert _count_users(factory) == 1

    def test_default_factory(self, global_engine):
        with session_scope() as session:
            session.add(UserModel(name="bob"))
        assert _count_users(db_engine.get_session_factory()) == 1


class TestEngineLifecycle:
    def test_not_initialised(self):
        db_engine.reset_engine()
        with pytest.raises(RuntimeError):
            db_engine.get_engine()
        with pytest.raises(RuntimeError):
            db_engine.get_session()
        with pytest.raises(RuntimeError):
            with session_scope():
                pass

    def test_sqlite_engine(self, global_engine):
        assert global_engine.dialect.name == "sqlite"
        assert not db_engine.is_postgres()

    def test_drop_tables(self, global_engine):
        db_engine.drop_tables()
        with pytest.raises(OperationalError):
            _count_users(db_engine.get_session_factory())
