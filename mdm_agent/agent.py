"""
Assembly of the enrollment core for a platform adapter.

The adapter owns the process and the platform callbacks; it builds one
controller per delivered event (or reuses one, the controller keeps no
state) and forwards the event to it.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import AgentSettings
from .controller import EnrollmentHandshakeController, Notifier
from .launcher import ForegroundLauncherPort, LockUiLauncher
from .models import locked_policy
from .policy import DevicePolicyPort, PolicyEnforcementEngine
from .store import EnrollmentStore, FilePersistence, InMemoryPersistence, PersistencePort

# ── Structured logging ─────────────────────────────────────────────────

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


# ── Wiring ─────────────────────────────────────────────────────────────

def build_controller(
    settings: AgentSettings,
    notifier: Notifier,
    device_policy: DevicePolicyPort,
    foreground: ForegroundLauncherPort,
    persistence: Optional[PersistencePort] = None,
) -> EnrollmentHandshakeController:
    """Wire the store, engine and launcher around the platform ports."""
    if persistence is None:
        if settings.store_path is not None:
            persistence = FilePersistence(settings.store_path)
        else:
            persistence = InMemoryPersistence()

    return EnrollmentHandshakeController(
        store=EnrollmentStore(persistence),
        engine=PolicyEnforcementEngine(device_policy),
        launcher=LockUiLauncher(foreground, settings.lock_ui_target),
        notifier=notifier,
        policy=locked_policy(settings.self_package),
        activation_message=settings.activation_message,
        self_package=settings.self_package,
    )
