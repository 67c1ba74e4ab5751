"""
Enrollment Handshake Controller

Turns platform lifecycle events into durable enforcement:

    admin.activated        -> UNPROVISIONED becomes ADMIN_ENABLED (+ notification)
    provisioning.complete  -> persist LOCKED, apply policy, launch lock UI

Handlers keep no state between invocations. Everything needed across events
is reloaded from the Enrollment Store, and every handler is safe to re-run
when the platform redelivers an event.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from .errors import ConfigError, LaunchError, PolicyError
from .launcher import LockUiLauncher
from .models import (
    DeviceLifecycleState,
    EnrollmentExtras,
    EnrollmentRecord,
    HandshakeOutcome,
    LifecycleEvent,
    PolicyConfiguration,
    next_state,
)
from .policy import PolicyEnforcementEngine
from .store import EnrollmentStore

logger = logging.getLogger("mdm-agent")

Extras = Union[EnrollmentExtras, Mapping[str, Any], None]


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class EnrollmentHandshakeController:
    def __init__(
        self,
        store: EnrollmentStore,
        engine: PolicyEnforcementEngine,
        launcher: LockUiLauncher,
        notifier: Notifier,
        policy: PolicyConfiguration,
        activation_message: str,
        self_package: str,
    ):
        if self_package not in policy.lock_task_packages:
            raise ConfigError(
                f"Lock-task allow-list {list(policy.lock_task_packages)} must include {self_package}"
            )
        self.store = store
        self.engine = engine
        self.launcher = launcher
        self.notifier = notifier
        self.policy = policy
        self.activation_message = activation_message

        self._handlers: dict[
            LifecycleEvent, Callable[[EnrollmentRecord, Extras], HandshakeOutcome]
        ] = {
            LifecycleEvent.ADMIN_ACTIVATED: self._on_admin_activated,
            LifecycleEvent.PROVISIONING_COMPLETE: self._on_provisioning_complete,
        }

    # ── Entry points ───────────────────────────────────────────────────

    def handle(self, event: LifecycleEvent | str, extras: Extras = None) -> HandshakeOutcome:
        """
        Handle one lifecycle event delivered by the platform.
        Raises StoreError when the record cannot be read or written; the
        platform may then redeliver the event.
        """
        event = LifecycleEvent(event)
        handler = self._handlers[event]

        with self.store.transaction():
            record = self.store.load()
            logger.info(
                f"EVENT | event={event.value} state={record.state.value} "
                f"enrolled_id={record.enrolled_id} policy_applied={record.policy_applied}"
            )
            return handler(record, extras)

    def on_admin_activated(self) -> HandshakeOutcome:
        return self.handle(LifecycleEvent.ADMIN_ACTIVATED)

    def on_provisioning_complete(self, extras: Extras = None) -> HandshakeOutcome:
        return self.handle(LifecycleEvent.PROVISIONING_COMPLETE, extras)

    # ── Transitions ────────────────────────────────────────────────────

    def _on_admin_activated(self, record: EnrollmentRecord, extras: Extras) -> HandshakeOutcome:
        event = LifecycleEvent.ADMIN_ACTIVATED
        from_state = record.state
        notified = self._notify()
        target = next_state(from_state, event)

        if from_state == DeviceLifecycleState.UNPROVISIONED:
            record = record.model_copy(update={"state": target})
            self.store.save(record)
            self._log_transition(from_state, target, event)
        elif from_state == DeviceLifecycleState.LOCKED and not record.policy_applied:
            logger.warning("EVENT | LOCKED without confirmed policy, retrying enforcement")
            record = self._enforce_policy(record)
        else:
            logger.info(f"EVENT | REDELIVERED event={event.value} state={record.state.value}, no-op")

        return HandshakeOutcome(
            event=event,
            from_state=from_state,
            to_state=target,
            enrolled_id=record.enrolled_id,
            policy_applied=record.policy_applied,
            notified=notified,
        )

    def _on_provisioning_complete(self, record: EnrollmentRecord, extras: Extras) -> HandshakeOutcome:
        event = LifecycleEvent.PROVISIONING_COMPLETE
        from_state = record.state
        target = next_state(from_state, event)

        enrolled_id = self._extract_enrolled_id(extras)
        if enrolled_id is None and record.enrolled_id is not None:
            enrolled_id = record.enrolled_id

        # Persist before enforcing: a storage failure must leave no side effects.
        locked = EnrollmentRecord(
            enrolled_id=enrolled_id,
            state=target,
            policy_applied=record.policy_applied if from_state == target else False,
        )
        self.store.save(locked)
        self._log_transition(from_state, target, event)

        # The lock UI goes up even if recording the policy result fails.
        try:
            locked = self._enforce_policy(locked)
        finally:
            ui_launched = self._launch_lock_ui()

        return HandshakeOutcome(
            event=event,
            from_state=from_state,
            to_state=target,
            enrolled_id=locked.enrolled_id,
            policy_applied=locked.policy_applied,
            ui_launched=ui_launched,
        )

    # ── Steps ──────────────────────────────────────────────────────────

    def _extract_enrolled_id(self, extras: Extras) -> Optional[str]:
        if extras is None:
            logger.warning("EXTRAS | missing admin extras bundle, enrolling without an id")
            return None
        if isinstance(extras, EnrollmentExtras):
            return extras.enrolled_id
        try:
            return EnrollmentExtras.model_validate(extras).enrolled_id
        except ValidationError as exc:
            logger.warning(
                f"EXTRAS | malformed admin extras bundle, enrolling without an id "
                f"errors={exc.error_count()}"
            )
            return None

    def _enforce_policy(self, record: EnrollmentRecord) -> EnrollmentRecord:
        """
        Apply the fixed policy. Failure leaves the record LOCKED with
        policy_applied=False, which the next event retries.
        """
        try:
            self.engine.apply(self.policy)
            applied = True
        except PolicyError as exc:
            logger.error(
                f"POLICY | FAILED {type(exc).__name__}: {exc} "
                f"(device stays {record.state.value}, retry on next event)"
            )
            applied = False

        if applied != record.policy_applied:
            record = record.model_copy(update={"policy_applied": applied})
            self.store.save(record)
        return record

    def _launch_lock_ui(self) -> bool:
        try:
            self.launcher.launch_foreground()
        except LaunchError as exc:
            logger.warning(f"LAUNCH | REJECTED {exc}")
            return False
        return True

    def _notify(self) -> bool:
        try:
            self.notifier.notify(self.activation_message)
        except Exception as exc:
            logger.warning(f"NOTIFY | failed, ignoring error={exc}")
            return False
        return True

    @staticmethod
    def _log_transition(
        from_state: DeviceLifecycleState, to_state: DeviceLifecycleState, event: LifecycleEvent
    ) -> None:
        logger.info(f"TRANSITION | {from_state.value} -> {to_state.value} event={event.value}")
