"""
Central pytest configuration and fixtures.

This module provides the fixtures shared across all test modules: isolated
configuration, stores on a temporary data directory, the simulated native
helper and an in-process loopback transport for channel tests.
"""

import asyncio
import json
import uuid
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from sequencer.config_models import LoggingConfig, PathsConfig, SystemConfig
from sequencer.ipc.channel import MessageChannel
from sequencer.logging_config import get_logger, setup_logging
from sequencer.scenario.history import HistoryLog
from sequencer.scenario.models import Scenario, parse_step
from sequencer.scenario.persistence import FileSystemStorage
from sequencer.scenario.settings import SettingsStore
from sequencer.scenario.store import ScenarioStore
from sequencer.simulation import SimulatedNativeService


class FakeClock:
    """Deterministic millisecond clock that advances on every read."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


class LoopbackWriter:
    """Stands in for the StreamWriter connected to the helper's stdin."""

    def __init__(self):
        self.lines: List[bytes] = []
        self.messages: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self.closed = False
        self.fail_writes = False

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise BrokenPipeError("helper stdin closed")
        self.lines.append(data)
        for line in data.splitlines():
            self.messages.put_nowait(json.loads(line))

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True
        # Wakes readers of the queue; None marks the end of the stream
        self.messages.put_nowait(None)

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        return None


class LoopbackHelper:
    """Test side of a loopback transport: reads requests and writes helper output."""

    def __init__(self):
        self.reader = asyncio.StreamReader()
        self.writer = LoopbackWriter()

    async def next_request(self, timeout: float = 1.0) -> Dict[str, Any]:
        return await asyncio.wait_for(self.writer.messages.get(), timeout)

    def send(self, message: Dict[str, Any]) -> None:
        self.feed_raw(json.dumps(message).encode("utf-8") + b"\n")

    def feed_raw(self, data: bytes) -> None:
        self.reader.feed_data(data)

    def respond(self, request_id: str, result: Any = None) -> None:
        self.send({"id": request_id, "success": True, "result": result})

    def fail(self, request_id: str, error: str) -> None:
        self.send({"id": request_id, "success": False, "error": error})

    def event(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.send({"event": name, "data": data or {}})

    def close(self) -> None:
        self.reader.feed_eof()


# ================================================================================
# Session-scoped fixtures (created once per test session)
# ================================================================================

@pytest.fixture(scope="session", autouse=True)
def test_session(tmp_path_factory: pytest.TempPathFactory) -> Generator[str, None, None]:
    """
    Set up logging for the test session.

    Logs go to a temporary directory so test runs never write into the
    working tree.
    """
    session_id = str(uuid.uuid4())
    log_config = SystemConfig(
        paths=PathsConfig(log_dir=tmp_path_factory.mktemp("logs")),
        logging=LoggingConfig(level="WARNING"),
    )
    setup_logging(log_config, session_id)

    logger = get_logger(__name__)
    logger.info(f"Starting test session {session_id}")

    yield session_id

    logger.info(f"Completing test session {session_id}")


# ================================================================================
# Function-scoped fixtures (created for each test function)
# ================================================================================

@pytest.fixture
def config(tmp_path: Path) -> SystemConfig:
    """Provide a system configuration isolated in a temporary directory."""
    return SystemConfig(
        paths=PathsConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(config: SystemConfig) -> FileSystemStorage:
    return FileSystemStorage(config.paths.data_dir)


@pytest.fixture
def store(storage: FileSystemStorage, clock: FakeClock) -> ScenarioStore:
    """Provide an empty scenario store persisting to the temporary data directory."""
    return ScenarioStore(storage, clock=clock)


@pytest.fixture
def settings_store(storage: FileSystemStorage) -> SettingsStore:
    return SettingsStore(storage)


@pytest.fixture
def history(store: ScenarioStore) -> HistoryLog:
    return HistoryLog(store)


@pytest.fixture
def fake_service() -> SimulatedNativeService:
    """Provide the in-memory native helper that records every call."""
    return SimulatedNativeService()


@pytest.fixture
def make_scenario(store: ScenarioStore) -> Callable[..., Scenario]:
    """Provide a factory creating a scenario in the store from step dictionaries."""
    def factory(name: str, steps: List[Dict[str, Any]]) -> Scenario:
        scenario = store.create_scenario(name)
        for step in steps:
            store.add_step(scenario.id, parse_step(step))
        return store.get_scenario(scenario.id)

    return factory


@pytest.fixture
def loopback() -> Callable[..., tuple]:
    """
    Provide a factory for a started MessageChannel wired to a LoopbackHelper.

    The factory must be called from inside a running event loop.
    """
    def factory(**kwargs: Any) -> tuple:
        helper = LoopbackHelper()
        channel = MessageChannel(helper.reader, helper.writer, **kwargs)
        channel.start()
        return channel, helper

    return factory


# ================================================================================
# Pytest hooks
# ================================================================================

def pytest_collection_modifyitems(config: pytest.Config, items) -> None:
    """Add markers based on the test path."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
