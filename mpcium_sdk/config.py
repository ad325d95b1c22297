from __future__ import annotations

import os
from enum import Enum
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import MpciumConfigurationError

_ENV_PREFIX = "MPCIUM_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ExhaustedPolicy(str, Enum):
    """What the result consumer does when a callback fails on its last permitted delivery."""
    BROKER = "broker"
    TERMINATE = "terminate"
    DEAD_LETTER = "dead_letter"


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value.strip() == "":
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise MpciumConfigurationError(f"Expected a boolean value, got {value!r}")


class MpciumSettings(BaseModel):
    """Resolved configuration for an MPC client. The broker connection is injected separately."""

    key_path: str = Field(default="./event_initiator.key")
    key_password: Optional[str] = Field(default=None, repr=False)
    key_encrypted: Optional[bool] = Field(default=None, description="None: detect from the .age suffix")

    request_timeout: float = Field(default=5.0, gt=0)

    max_deliver: int = Field(default=3, ge=1)
    nak_delay: Optional[float] = Field(default=None, ge=0)
    fetch_batch: int = Field(default=10, ge=1)
    fetch_timeout: float = Field(default=5.0, gt=0)
    retry_backoff: float = Field(default=1.0, ge=0)
    exhausted_policy: ExhaustedPolicy = Field(default=ExhaustedPolicy.BROKER)
    dead_letter_subject: Optional[str] = Field(default=None)

    stream_max_bytes: int = Field(default=100 * 1024 * 1024, gt=0)

    @field_validator("key_path")
    @classmethod
    def _ensure_key_path(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("key_path must not be empty")
        return value.strip()

    @model_validator(mode="after")
    def _dead_letter_needs_subject(self) -> "MpciumSettings":
        if self.exhausted_policy == ExhaustedPolicy.DEAD_LETTER and not self.dead_letter_subject:
            raise ValueError("exhausted_policy=dead_letter requires dead_letter_subject")
        return self

    @classmethod
    def load(cls, dotenv: bool = True, **overrides: Any) -> "MpciumSettings":
        """
        Load settings from explicit overrides, then MPCIUM_* environment variables,
        then .env files, then defaults.

        Args:
            dotenv: Read a .env file first (never overrides real environment values).
            **overrides: Field values that take precedence over the environment.

        Returns:
            MpciumSettings
        """
        if dotenv:
            load_dotenv(override=False)

        raw: Dict[str, Any] = {}
        env_map = {
            "key_path": "KEY_PATH",
            "key_password": "KEY_PASSWORD",
            "request_timeout": "REQUEST_TIMEOUT",
            "max_deliver": "MAX_DELIVER",
            "nak_delay": "NAK_DELAY",
            "fetch_batch": "FETCH_BATCH",
            "fetch_timeout": "FETCH_TIMEOUT",
            "retry_backoff": "RETRY_BACKOFF",
            "exhausted_policy": "EXHAUSTED_POLICY",
            "dead_letter_subject": "DEAD_LETTER_SUBJECT",
            "stream_max_bytes": "STREAM_MAX_BYTES",
        }
        for field_name, suffix in env_map.items():
            value = os.getenv(f"{_ENV_PREFIX}{suffix}")
            if value is not None and value != "":
                raw[field_name] = value

        encrypted = _parse_bool(os.getenv(f"{_ENV_PREFIX}KEY_ENCRYPTED"))
        if encrypted is not None:
            raw["key_encrypted"] = encrypted

        raw.update({k: v for k, v in overrides.items() if k in cls.model_fields and v is not None})

        try:
            return cls(**raw)
        except ValidationError as exc:
            raise MpciumConfigurationError(f"Invalid mpcium settings: {exc}") from exc

    def replace(self, **overrides: Any) -> "MpciumSettings":
        """Copy of these settings with `overrides` applied and re-validated."""
        values = {**self.model_dump(), **overrides}
        try:
            return type(self)(**values)
        except ValidationError as exc:
            raise MpciumConfigurationError(f"Invalid mpcium settings: {exc}") from exc
