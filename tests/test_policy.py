"""
Tests for the policy enforcement engine and lock UI launcher.
"""

import pytest

from mdm_agent.errors import ActivityStartRejected, PolicyUnauthorized, PolicyUnavailable
from mdm_agent.launcher import LockUiLauncher
from mdm_agent.models import KEYGUARD_DISABLE_FEATURES_ALL, PolicyConfiguration, locked_policy
from mdm_agent.policy import PolicyEnforcementEngine

from conftest import SELF_PACKAGE, FakeDevicePolicy, FakeForeground


# ── Policy engine ──────────────────────────────────────────────────────

def test_apply_sets_both_policies():
    dpm = FakeDevicePolicy()
    PolicyEnforcementEngine(dpm).apply(locked_policy(SELF_PACKAGE))
    assert dpm.lock_task_packages == [SELF_PACKAGE]
    assert dpm.keyguard_mask == KEYGUARD_DISABLE_FEATURES_ALL


def test_apply_twice_is_idempotent():
    dpm = FakeDevicePolicy()
    engine = PolicyEnforcementEngine(dpm)
    config = locked_policy(SELF_PACKAGE)

    engine.apply(config)
    once = (dpm.lock_task_packages, dpm.keyguard_mask)
    engine.apply(config)
    assert (dpm.lock_task_packages, dpm.keyguard_mask) == once


def test_apply_replaces_previous_allow_list():
    dpm = FakeDevicePolicy()
    engine = PolicyEnforcementEngine(dpm)
    engine.apply(PolicyConfiguration(lock_task_packages=[SELF_PACKAGE, "com.vendor.dialer"]))
    engine.apply(PolicyConfiguration(lock_task_packages=[SELF_PACKAGE], keyguard_disabled_features=0))
    assert dpm.lock_task_packages == [SELF_PACKAGE]
    assert dpm.keyguard_mask == 0


def test_revoked_admin_is_unauthorized():
    dpm = FakeDevicePolicy()
    dpm.admin_active = False
    with pytest.raises(PolicyUnauthorized):
        PolicyEnforcementEngine(dpm).apply(locked_policy(SELF_PACKAGE))
    assert dpm.calls == 0


def test_permission_error_maps_to_unauthorized():
    dpm = FakeDevicePolicy()
    dpm.error = PermissionError("not device owner")
    with pytest.raises(PolicyUnauthorized):
        PolicyEnforcementEngine(dpm).apply(locked_policy(SELF_PACKAGE))


def test_connection_error_maps_to_unavailable():
    dpm = FakeDevicePolicy()
    dpm.error = TimeoutError("binder timeout")
    with pytest.raises(PolicyUnavailable) as exc_info:
        PolicyEnforcementEngine(dpm).apply(locked_policy(SELF_PACKAGE))
    assert exc_info.value.retryable is True


def test_port_without_admin_hook():
    class MinimalPolicy:
        def __init__(self):
            self.state = {}

        def set_lock_task_packages(self, packages):
            self.state["packages"] = list(packages)

        def set_keyguard_disabled_features(self, mask):
            self.state["mask"] = mask

    port = MinimalPolicy()
    PolicyEnforcementEngine(port).apply(locked_policy(SELF_PACKAGE))
    assert port.state == {"packages": [SELF_PACKAGE], "mask": KEYGUARD_DISABLE_FEATURES_ALL}


# ── Lock UI launcher ───────────────────────────────────────────────────

def test_launch_requests_new_task():
    fg = FakeForeground()
    LockUiLauncher(fg, "pkg/.LockActivity").launch_foreground()
    assert fg.requests == [("pkg/.LockActivity", True)]


def test_launch_repeatedly():
    fg = FakeForeground()
    launcher = LockUiLauncher(fg, "pkg/.LockActivity")
    for _ in range(3):
        launcher.launch_foreground()
    assert len(fg.requests) == 3
    assert launcher.launch_count == 3


def test_launch_rejected_passes_through():
    launcher = LockUiLauncher(FakeForeground(reject=True), "pkg/.LockActivity")
    with pytest.raises(ActivityStartRejected):
        launcher.launch_foreground()


def test_unexpected_port_error_wrapped():
    class BrokenForeground:
        def start_task_root(self, target, new_task):
            raise RuntimeError("window manager crashed")

    with pytest.raises(ActivityStartRejected):
        LockUiLauncher(BrokenForeground(), "pkg/.LockActivity").launch_foreground()


def test_unexpected_port_error_maps_to_unavailable():
    dpm = FakeDevicePolicy()
    dpm.error = RuntimeError("IllegalStateException: user locked")
    with pytest.raises(PolicyUnavailable) as exc_info:
        PolicyEnforcementEngine(dpm).apply(locked_policy(SELF_PACKAGE))
    assert "RuntimeError" in str(exc_info.value)
