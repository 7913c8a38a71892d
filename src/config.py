# src/config.py
"""
Configuration loader with validation and safe error handling.

- Reads optional digest.toml (or a provided path), section [digest].
- Falls back to defaults when the file is absent.
- IDG_* env vars override file values.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from digest import CHUNK_SIZE, Algorithm, Encoding
from errors import ConfigLoadError, InvalidArgumentError


_ENV_KEYS = {
    "IDG_ALGORITHM": "algorithm",
    "IDG_ENCODING": "encoding",
    "IDG_CHUNK_SIZE": "chunk_size",
}


class DigestConfig(BaseModel):
    """Defaults applied when a caller does not pick algorithm/encoding."""

    algorithm: Algorithm = Algorithm.SHA512
    encoding: Encoding = Encoding.BASE64
    chunk_size: int = Field(default=CHUNK_SIZE, gt=0, description="Read size in bytes")
    concurrency: int = Field(default=4, ge=1, description="Files hashed at once by the CLI")

    @field_validator("algorithm", mode="before")
    @classmethod
    def _parse_algorithm(cls, v: object) -> Algorithm:
        try:
            return Algorithm.parse(v)  # type: ignore[arg-type]
        except InvalidArgumentError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator("encoding", mode="before")
    @classmethod
    def _parse_encoding(cls, v: object) -> Encoding:
        try:
            return Encoding.parse(v)  # type: ignore[arg-type]
        except InvalidArgumentError as exc:
            raise ValueError(str(exc)) from exc


class AppConfig(BaseModel):
    """Root application configuration object."""

    digest: DigestConfig = DigestConfig()

    @staticmethod
    def load(path: Optional[Path] = None) -> "AppConfig":
        """
        Load config from TOML if present; otherwise return defaults.

        Load order:
          1) Provided path (must exist).
          2) ./digest.toml in the current working directory.
        Env overrides: IDG_ALGORITHM, IDG_ENCODING, IDG_CHUNK_SIZE.

        Raises:
            ConfigLoadError: if the file cannot be read or validated.
        """
        toml_path = path or (Path.cwd() / "digest.toml")
        data: dict = {}

        if path is not None and not path.exists():
            raise ConfigLoadError(f"Config file not found: {path}")

        if toml_path.exists():
            try:
                raw_text = toml_path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigLoadError(f"Failed to read config file: {toml_path}") from exc

            try:
                parsed = tomllib.loads(raw_text)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigLoadError(f"Invalid TOML in config file: {toml_path}") from exc

            section = parsed.get("digest", parsed)
            if not isinstance(section, dict):
                raise ConfigLoadError(
                    f"[digest] must be a table in config file: {toml_path}"
                )
            data = dict(section)

        for env, key in _ENV_KEYS.items():
            value = os.getenv(env)
            if value:
                data[key] = value

        try:
            return AppConfig(digest=DigestConfig(**data))
        except ValidationError as exc:
            raise ConfigLoadError(f"Invalid configuration values: {exc}") from exc
