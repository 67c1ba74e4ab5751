"""Lock UI Launcher: brings the restricted-mode screen to the foreground."""

from __future__ import annotations

import logging
from typing import Protocol

from .errors import ActivityStartRejected, LaunchError

logger = logging.getLogger("launcher")


class ForegroundLauncherPort(Protocol):
    def start_task_root(self, target: str, new_task: bool) -> None: ...


class LockUiLauncher:
    """
    Each call is an independent request; the platform may coalesce
    duplicates, so calling this repeatedly is always safe.
    """

    def __init__(self, foreground: ForegroundLauncherPort, target: str):
        self.foreground = foreground
        self.target = target
        self.launch_count = 0

    def launch_foreground(self) -> None:
        self.launch_count += 1
        # The caller is a short-lived event handler, never a visible screen,
        # so the lock UI always gets a task of its own.
        try:
            self.foreground.start_task_root(self.target, new_task=True)
        except LaunchError:
            raise
        except Exception as exc:
            raise ActivityStartRejected(f"Could not start {self.target}: {exc}") from exc
        logger.info(f"LAUNCH | target={self.target} new_task=True request={self.launch_count}")
