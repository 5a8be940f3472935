import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure before any imports that might read settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-for-testing-only-do-not-use")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only-do-not-use")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sessionkeeper.config import Settings, reset_settings_cache  # noqa: E402
from sessionkeeper.service.runtime import Runtime  # noqa: E402
from sessionkeeper.storage.memory import MemoryStore  # noqa: E402

ACCESS_SECRET = "unit-access-secret-0123456789abcdef"
REFRESH_SECRET = "unit-refresh-secret-0123456789abcdef"


class FakeClock:
    """Manually advanced epoch clock shared by the store and the services."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InterleavingStore:
    """Store wrapper whose commands yield to the event loop before and after running.

    MemoryStore coroutines never suspend, so without this a gathered sequence
    of store calls runs to completion one caller at a time.
    """

    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name):
        target = getattr(self._inner, name)
        if not inspect.iscoroutinefunction(target):
            return target

        async def _call(*args, **kwargs):
            await asyncio.sleep(0)
            result = await target(*args, **kwargs)
            await asyncio.sleep(0)
            return result

        return _call


def make_settings(**overrides) -> Settings:
    values = {
        "use_memory_store": True,
        "test_mode": True,
        "jwt_access_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "jwt_issuer": "sessionkeeper-test",
        "max_sessions_per_user": 50,
        "rate_limit_window_ms": 1000,
        "rate_limit_max_requests": 5,
        "cookie_secure": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def runtime(settings, store, clock):
    return Runtime(settings, store=store, clock=clock)


@pytest.fixture
def interleaved_runtime(settings, store, clock):
    return Runtime(settings, store=InterleavingStore(store), clock=clock)


@pytest.fixture
def auth(runtime):
    return runtime.auth


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
