import logging
import os
import pathlib
import sys
from typing import Callable, List

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import mnemos`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: real-timer and churn tests (skipped unless MNEMOS_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('MNEMOS_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set MNEMOS_RUN_SLOW=1 to enable'))


# ════════════════════════════════════════════════════════════════════════════
# SHARED STATE
# ════════════════════════════════════════════════════════════════════════════


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Every test starts from default config and a fresh default stats registry."""
    from mnemos.config import ConfigManager
    from mnemos.stats import StatsRegistry

    ConfigManager().reset()
    StatsRegistry.reset_instance()
    yield
    ConfigManager().reset()
    StatsRegistry.reset_instance()


@pytest.fixture
def stats_registry():
    """A private registry with collection on."""
    from mnemos.stats import StatsRegistry

    return StatsRegistry(collecting=True)


# ════════════════════════════════════════════════════════════════════════════
# FAKE TIMERS
# ════════════════════════════════════════════════════════════════════════════


class FakeTimer:
    """Timer that only fires when the test says so."""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def live(self) -> bool:
        return self.started and not self.cancelled

    def fire(self) -> None:
        self.callback()


class FakeTimerFactory:
    """Timer factory recording every timer it hands out."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.live]

    def fire_all(self) -> None:
        for timer in self.live:
            timer.fire()


@pytest.fixture
def fake_timers() -> FakeTimerFactory:
    return FakeTimerFactory()


# ════════════════════════════════════════════════════════════════════════════
# LOG CAPTURE
# ════════════════════════════════════════════════════════════════════════════


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def capture_logs():
    """
    Attach a recording handler to a MNEMOS logger.

    MNEMOS loggers do not propagate, so caplog cannot see them.
    Usage: records = capture_logs(logger)  where logger is a MnemosLogger.
    """
    attached = []

    def attach(mnemos_logger, level: int = logging.DEBUG) -> List[logging.LogRecord]:
        handler = _ListHandler()
        std = mnemos_logger.logger
        attached.append((std, handler, std.level))
        std.addHandler(handler)
        std.setLevel(level)
        return handler.records

    yield attach

    for std, handler, level in attached:
        std.removeHandler(handler)
        std.setLevel(level)
