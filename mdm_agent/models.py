"""
Enrollment data models and the deterministic lifecycle state machine.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ── Enums ──────────────────────────────────────────────────────────────

class DeviceLifecycleState(str, Enum):
    UNPROVISIONED = "UNPROVISIONED"
    ADMIN_ENABLED = "ADMIN_ENABLED"
    LOCKED = "LOCKED"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]


_STATE_RANK: dict[DeviceLifecycleState, int] = {
    DeviceLifecycleState.UNPROVISIONED: 0,
    DeviceLifecycleState.ADMIN_ENABLED: 1,
    DeviceLifecycleState.LOCKED: 2,
}


class LifecycleEvent(str, Enum):
    ADMIN_ACTIVATED = "admin.activated"
    PROVISIONING_COMPLETE = "provisioning.complete"


# ── Valid state transitions ────────────────────────────────────────────

VALID_TRANSITIONS: dict[tuple[DeviceLifecycleState, LifecycleEvent], DeviceLifecycleState] = {
    (DeviceLifecycleState.UNPROVISIONED, LifecycleEvent.ADMIN_ACTIVATED): DeviceLifecycleState.ADMIN_ENABLED,
    (DeviceLifecycleState.ADMIN_ENABLED, LifecycleEvent.ADMIN_ACTIVATED): DeviceLifecycleState.ADMIN_ENABLED,
    (DeviceLifecycleState.LOCKED, LifecycleEvent.ADMIN_ACTIVATED): DeviceLifecycleState.LOCKED,

    # The activation broadcast can arrive after provisioning, or not at all.
    (DeviceLifecycleState.UNPROVISIONED, LifecycleEvent.PROVISIONING_COMPLETE): DeviceLifecycleState.LOCKED,
    (DeviceLifecycleState.ADMIN_ENABLED, LifecycleEvent.PROVISIONING_COMPLETE): DeviceLifecycleState.LOCKED,
    (DeviceLifecycleState.LOCKED, LifecycleEvent.PROVISIONING_COMPLETE): DeviceLifecycleState.LOCKED,
}


def next_state(current: DeviceLifecycleState, event: LifecycleEvent) -> DeviceLifecycleState:
    """Look up the target state; never returns a state ranked below `current`."""
    target = VALID_TRANSITIONS[(current, event)]
    return target if target.rank >= current.rank else current


# ── Policy constants ───────────────────────────────────────────────────

# Mirrors DevicePolicyManager.KEYGUARD_DISABLE_FEATURES_ALL.
KEYGUARD_DISABLE_FEATURES_NONE = 0
KEYGUARD_DISABLE_FEATURES_ALL = 0x7FFFFFFF

STORE_NAMESPACE = "mdm_agent.enrollment"


class PolicyConfiguration(BaseModel):
    """Lock-task allow-list plus the keyguard feature mask to disable."""

    model_config = ConfigDict(frozen=True)

    lock_task_packages: tuple[str, ...] = Field(..., min_length=1)
    keyguard_disabled_features: int = Field(KEYGUARD_DISABLE_FEATURES_ALL, ge=0)

    @field_validator("lock_task_packages", mode="before")
    @classmethod
    def dedupe_packages(cls, v: Any) -> Any:
        """Keep first occurrence order; the allow-list is an ordered set."""
        if isinstance(v, str):
            v = [v]
        seen: list[str] = []
        for pkg in v:
            pkg = str(pkg).strip()
            if not pkg:
                raise ValueError("package identifiers must be non-empty")
            if pkg not in seen:
                seen.append(pkg)
        return tuple(seen)


def locked_policy(self_package: str) -> PolicyConfiguration:
    """The fixed kiosk policy: only this agent may run, every keyguard feature off."""
    return PolicyConfiguration(
        lock_task_packages=(self_package,),
        keyguard_disabled_features=KEYGUARD_DISABLE_FEATURES_ALL,
    )


# ── Enrollment payloads / records ──────────────────────────────────────

_PRIMITIVES = (str, int, float, bool, type(None))


class EnrollmentExtras(BaseModel):
    """Admin extras bundle delivered once, when provisioning completes."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    enrolled_id: Optional[str] = Field(None, alias="enrolledId")

    @field_validator("enrolled_id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        if v is None:
            return None
        if not isinstance(v, (str, int)) or isinstance(v, bool):
            raise ValueError("enrolledId must be a string")
        v = str(v).strip()
        return v or None

    @model_validator(mode="after")
    def primitive_extras(self) -> "EnrollmentExtras":
        for key, value in (self.model_extra or {}).items():
            if not isinstance(value, _PRIMITIVES):
                raise ValueError(f"extra {key!r} must be a primitive value")
        return self


class EnrollmentRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enrolled_id: Optional[str] = Field(None, alias="enrolledId")
    state: DeviceLifecycleState = DeviceLifecycleState.UNPROVISIONED
    policy_applied: bool = Field(False, alias="policyApplied")


class HandshakeOutcome(BaseModel):
    """What a single lifecycle event did to the device."""

    event: LifecycleEvent
    from_state: DeviceLifecycleState
    to_state: DeviceLifecycleState
    enrolled_id: Optional[str] = None
    policy_applied: bool = False
    ui_launched: bool = False
    notified: bool = False
