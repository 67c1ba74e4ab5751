"""
Policy Enforcement Engine

Pushes a PolicyConfiguration to the platform's device-policy service.
Both settings are full replacements, so applying the same configuration
again leaves the device exactly as it was.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from .errors import PolicyError, PolicyUnauthorized, PolicyUnavailable
from .models import PolicyConfiguration

logger = logging.getLogger("policy")


class DevicePolicyPort(Protocol):
    def set_lock_task_packages(self, packages: Sequence[str]) -> None: ...

    def set_keyguard_disabled_features(self, mask: int) -> None: ...


class PolicyEnforcementEngine:
    def __init__(self, device_policy: DevicePolicyPort):
        self.device_policy = device_policy

    def apply(self, config: PolicyConfiguration) -> None:
        """
        Apply `config`, raising PolicyUnauthorized if admin rights are gone
        or PolicyUnavailable if the policy service cannot be reached.
        """
        packages = list(config.lock_task_packages)
        mask = config.keyguard_disabled_features

        # Optional hook; ports without it are assumed to still hold admin rights.
        is_admin_active = getattr(self.device_policy, "is_admin_active", None)
        if is_admin_active is not None and not self._call(is_admin_active):
            logger.error("POLICY | UNAUTHORIZED device-admin capability revoked")
            raise PolicyUnauthorized("Device-admin capability has been revoked")

        self._call(self.device_policy.set_lock_task_packages, packages)
        self._call(self.device_policy.set_keyguard_disabled_features, mask)

        logger.info(f"POLICY | applied lock_task_packages={packages} keyguard_mask={mask:#x}")

    @staticmethod
    def _call(fn, *args):
        try:
            return fn(*args)
        except PolicyError:
            raise
        except PermissionError as exc:
            logger.error(f"POLICY | UNAUTHORIZED error={exc}")
            raise PolicyUnauthorized(str(exc)) from exc
        except (ConnectionError, TimeoutError, OSError) as exc:
            logger.error(f"POLICY | UNAVAILABLE error={exc}")
            raise PolicyUnavailable(str(exc)) from exc
        except Exception as exc:
            logger.error(f"POLICY | UNAVAILABLE unexpected {type(exc).__name__}: {exc}")
            raise PolicyUnavailable(f"{type(exc).__name__}: {exc}") from exc
