"""Agent settings: Pydantic model and environment loading."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

ENV_PREFIX = "MDM_AGENT_"


class AgentSettings(BaseModel):
    self_package: str = Field("com.emilocker.mdm", min_length=1)
    lock_ui_target: str = Field("com.emilocker.mdm/.LockActivity", min_length=1)
    activation_message: str = "Emi.locker Protection Active"
    store_path: Optional[Path] = None  # None keeps the record in memory
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> Any:
        level = str(v).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v!r}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentSettings":
        """Build settings from MDM_AGENT_* variables, e.g. MDM_AGENT_SELF_PACKAGE."""
        environ = os.environ if environ is None else environ
        values = {
            name: environ[ENV_PREFIX + name.upper()]
            for name in cls.model_fields
            if ENV_PREFIX + name.upper() in environ
        }
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid agent settings: {exc}") from exc
