"""
Engine settings — knobs that are not part of the manifest.

Resolved in precedence order:
    CLI flag  >  OFFSETUP_* env var  >  default
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "OFFSETUP_"

_TRUTHY = {"1", "true", "yes", "on"}


class EngineSettings(BaseModel):
    """Execution settings for one run."""

    concurrency: int = Field(default=4, ge=1)
    download_dir: str = str(Path("~/.cache/offsetup/downloads").expanduser())
    report_file: str = ".offsetup/report.ndjson"
    sudo: bool = True
    dry_run: bool = False
    debug: bool = False
    install_priority: list[str] = Field(default_factory=list)

    @field_validator("install_priority", mode="before")
    @classmethod
    def _split_priority(cls, v: object) -> object:
        if isinstance(v, str):
            return parse_priority(v)
        return v

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> EngineSettings:
        """Build settings from ``OFFSETUP_*`` variables, then apply overrides.

        Overrides whose value is None are ignored, so CLI options that
        were not given fall through to the environment.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            if field.annotation is bool:
                values[name] = raw.strip().lower() in _TRUTHY
            else:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


def parse_priority(value: str) -> list[str]:
    """``"docker, native"`` → ``["docker", "native"]``."""
    return [part.strip() for part in value.split(",") if part.strip()]
