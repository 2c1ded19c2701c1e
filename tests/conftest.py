"""Pytest configuration, Hypothesis profiles and queue fixtures."""

import logging

import pytest
from hypothesis import settings
from hypothesis import strategies as st
from sqlalchemy.ext.asyncio import create_async_engine

from ackstack.backends.file import FileQueue
from ackstack.backends.inmemory import InMemoryQueue
from ackstack.backends.sql import SqlQueue
from ackstack.core.logging import ROOT_LOGGER_NAME

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")

FAST_POLL = 0.01

# JSON values a Message payload may carry
json_payloads = st.recursive(
    st.none()
    | st.booleans()
    | st.integers(min_value=-(2**53), max_value=2**53)
    | st.text(max_size=20),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=10,
)


@pytest.fixture
async def memory_queue():
    queue = InMemoryQueue(poll_interval=FAST_POLL)
    yield queue
    await queue.close()


@pytest.fixture
async def file_queue(tmp_path):
    queue = FileQueue(tmp_path / "queues", poll_interval=FAST_POLL)
    yield queue
    await queue.close()


@pytest.fixture
async def sql_engine(tmp_path):
    # One connection: concurrent tasks queue for it instead of racing SQLite's file lock
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}", pool_size=1, max_overflow=0
    )
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_queue(sql_engine):
    queue = SqlQueue(engine=sql_engine, poll_interval=FAST_POLL)
    yield queue
    await queue.close()


@pytest.fixture(params=["memory", "file", "sql"])
async def queue(request, tmp_path):
    """Every local backend, for the shared contract suite."""
    if request.param == "memory":
        backend = InMemoryQueue(poll_interval=FAST_POLL)
    elif request.param == "file":
        backend = FileQueue(tmp_path / "queues", poll_interval=FAST_POLL)
    else:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}", pool_size=1, max_overflow=0
        )
        backend = SqlQueue(engine=engine, poll_interval=FAST_POLL)
    yield backend
    await backend.close()
    if request.param == "sql":
        await backend.engine.dispose()


@pytest.fixture(autouse=True)
def _restore_package_logger():
    """Undo configure_logging so caplog keeps seeing package records."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
