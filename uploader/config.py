"""Configuration settings for the uploader."""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.constants import (
    DEFAULT_CHUNK_RETRY,
    DEFAULT_CHUNK_SIZE_BYTES,
    DEFAULT_CONCURRENCY,
    DEFAULT_FILE_FIELD,
    DEFAULT_HTTP_METHOD,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_PREFIX,
    FILE_ID_PREFIX,
)
from common.logging_config import get_logger

logger = get_logger(__name__)


def _env(name: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    raw = os.environ.get(f"{ENV_PREFIX}{name}")
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default!r}")
        return default


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def default_set_name(seq: int) -> str:
    """Name component of a file id: epoch milliseconds followed by the sequence number."""
    return f"{int(time.time() * 1000)}{seq}"


@dataclass
class TransportConfig:
    """
    Per-chunk transport settings.

    Copied from UploaderConfig when a chunk task is created, so
    upload_start / upload_before_send subscribers may rewrite them
    for a single chunk.
    """
    server: str
    method: str = DEFAULT_HTTP_METHOD
    file_val: str = DEFAULT_FILE_FIELD
    headers: Dict[str, str] = field(default_factory=dict)
    form_data: Dict[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    with_credentials: bool = False
    file_name: str = ""


class UploaderConfig(BaseModel):
    """
    Uploader configuration.

    Priority (highest to lowest):
    1. Explicit keyword arguments / JSON file values
    2. Environment variables (UPLOADER_*)
    3. Default values
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    # Scheduling
    concurrency: int = Field(default_factory=lambda: _env("CONCURRENCY", DEFAULT_CONCURRENCY, int), ge=1)
    chunked: bool = Field(default_factory=lambda: _env("CHUNKED", True, _env_bool))
    chunk_size: int = Field(default_factory=lambda: _env("CHUNK_SIZE", DEFAULT_CHUNK_SIZE_BYTES, int), gt=0)
    chunk_retry: int = Field(default_factory=lambda: _env("CHUNK_RETRY", DEFAULT_CHUNK_RETRY, int), ge=1)
    auto: bool = True

    # Transport
    server: str = Field(default_factory=lambda: _env("SERVER", ""))
    method: str = DEFAULT_HTTP_METHOD
    timeout: float = Field(default_factory=lambda: _env("TIMEOUT", DEFAULT_TIMEOUT_SECONDS, float), ge=0)
    file_val: str = DEFAULT_FILE_FIELD
    form_data: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    with_credentials: bool = False

    # File records
    set_name: Callable[[int], str] = default_set_name
    file_id_prefix: str = FILE_ID_PREFIX

    # Validation before queueing
    accept: List[str] = Field(default_factory=list)
    file_num_limit: Optional[int] = Field(default=None, ge=1)
    file_size_limit: Optional[int] = Field(default=None, ge=0)
    file_single_size_limit: Optional[int] = Field(default=None, ge=0)

    # Logging
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))
    log_handler: Optional[logging.Handler] = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return level

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> "UploaderConfig":
        """
        Load configuration from a JSON file.

        A missing or unreadable file falls back to defaults; keyword
        overrides win over file values.

        Args:
            path: Path to a JSON object with config keys
            **overrides: Values that take precedence over the file

        Returns:
            UploaderConfig instance
        """
        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not read config file {path}: {e}, using defaults")
                data = {}
            if not isinstance(data, dict):
                logger.warning(f"Config file {path} does not contain a JSON object, using defaults")
                data = {}
        data.update(overrides)
        return cls(**data)

    def transport_config(self, file_name: str) -> TransportConfig:
        """Build an independent per-chunk transport configuration."""
        return TransportConfig(
            server=self.server,
            method=self.method,
            file_val=self.file_val,
            headers=dict(self.headers),
            form_data=dict(self.form_data),
            timeout=self.timeout,
            with_credentials=self.with_credentials,
            file_name=file_name,
        )

