"""
Runtime settings resolved from the environment.
"""

from __future__ import annotations

import os
import typing as t
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "LLMRELAY_"

LogLevel = t.Literal["TRACE", "DEBUG", "INFO", "WARN", "ERROR"]

# Log levels under which successful request bodies are not kept on disk.
RESTRICTIVE_LOG_LEVELS: frozenset[str] = frozenset({"ERROR", "INFO"})

_TRUTHY = {"1", "true", "yes", "on"}


class RelaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    log_level: LogLevel = Field(default="ERROR", description="verbosity of the llmrelay logger")
    allow_insecure: bool = Field(
        default=False, description="skip TLS certificate verification for every request"
    )
    proxy: str | None = Field(default=None, description="proxy URL used for every request")
    artifact_dir: Path | None = Field(
        default=None,
        description="directory for request body artifacts, defaults to the system temp dir",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: t.Any) -> t.Any:
        if isinstance(value, str):
            value = value.strip().upper()
            if value == "WARNING":
                return "WARN"
        return value

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "RelaySettings":
        """
        Build settings from ``LLMRELAY_*`` environment variables.

        Parameters
        ----------
        dotenv : bool, optional
            Load a ``.env`` file first, without overriding set variables.

        Returns
        -------
        RelaySettings
            Resolved settings.
        """
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True), override=False)

        values: dict[str, t.Any] = {}
        log_level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL")
        if log_level:
            values["log_level"] = log_level
        allow_insecure = os.getenv(f"{ENV_PREFIX}ALLOW_INSECURE")
        if allow_insecure is not None:
            values["allow_insecure"] = allow_insecure.strip().lower() in _TRUTHY
        proxy = os.getenv(f"{ENV_PREFIX}PROXY")
        if proxy:
            values["proxy"] = proxy
        artifact_dir = os.getenv(f"{ENV_PREFIX}ARTIFACT_DIR")
        if artifact_dir:
            values["artifact_dir"] = Path(artifact_dir).expanduser().resolve()
        return cls.model_validate(values)
