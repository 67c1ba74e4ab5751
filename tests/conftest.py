"""
Fake platform ports shared by the tests.
"""

import pytest

from mdm_agent.config import AgentSettings
from mdm_agent.agent import build_controller
from mdm_agent.errors import ActivityStartRejected
from mdm_agent.store import InMemoryPersistence

SELF_PACKAGE = "com.emilocker.mdm"


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.messages: list[str] = []
        self.fail = fail

    def notify(self, message: str) -> None:
        if self.fail:
            raise RuntimeError("toast service gone")
        self.messages.append(message)


class FakeDevicePolicy:
    """Records the last value pushed for each policy, like the real service."""

    def __init__(self):
        self.lock_task_packages: list[str] | None = None
        self.keyguard_mask: int | None = None
        self.calls = 0
        self.admin_active = True
        self.error: Exception | None = None

    def is_admin_active(self) -> bool:
        return self.admin_active

    def set_lock_task_packages(self, packages) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.lock_task_packages = list(packages)

    def set_keyguard_disabled_features(self, mask: int) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.keyguard_mask = mask


class FakeForeground:
    def __init__(self, reject: bool = False):
        self.requests: list[tuple[str, bool]] = []
        self.reject = reject

    def start_task_root(self, target: str, new_task: bool) -> None:
        if self.reject:
            raise ActivityStartRejected("background activity start blocked")
        self.requests.append((target, new_task))


class FlakyPersistence(InMemoryPersistence):
    """In-memory persistence whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_puts = False

    def put(self, key: str, value: str) -> None:
        if self.fail_puts:
            raise OSError("storage unavailable")
        super().put(key, value)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def device_policy():
    return FakeDevicePolicy()


@pytest.fixture
def foreground():
    return FakeForeground()


@pytest.fixture
def persistence():
    return FlakyPersistence()


@pytest.fixture
def controller(notifier, device_policy, foreground, persistence):
    return build_controller(
        AgentSettings(self_package=SELF_PACKAGE),
        notifier=notifier,
        device_policy=device_policy,
        foreground=foreground,
        persistence=persistence,
    )
