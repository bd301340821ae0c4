"""Runtime configuration for a gate run."""

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from imagegate.consts import (
    BUILD_DEFAULT_TIMEOUT,
    BUILD_MAX_RETRIES,
    DEFAULT_DATA_DIR,
    DEFAULT_SCANNERS,
    ENV_CONCURRENCY,
    ENV_DATA_DIR,
    ENV_RETRIES,
    ENV_SCAN_TIMEOUT,
    ENV_SCANNERS,
    SCAN_CACHE_TTL,
    SCAN_CONCURRENCY,
    SCAN_DEFAULT_TIMEOUT,
    SCAN_MAX_RETRIES,
)

logger = logging.getLogger(__name__)


class GateConfig(BaseModel):
    """Configurable retry, timeout, concurrency and publish settings."""

    scanners: list[str] = Field(default_factory=lambda: list(DEFAULT_SCANNERS), min_length=1)
    concurrency: int = Field(default=SCAN_CONCURRENCY, ge=1, description="Scanner worker pool size")
    scan_timeout: int = Field(default=SCAN_DEFAULT_TIMEOUT, gt=0, description="Seconds per scanner")
    scan_retries: int = Field(default=SCAN_MAX_RETRIES, ge=0)
    build_timeout: int = Field(default=BUILD_DEFAULT_TIMEOUT, gt=0)
    build_retries: int = Field(default=BUILD_MAX_RETRIES, ge=0)
    dockerfile: str | None = Field(default=None, description="Dockerfile path relative to context")
    build_args: dict[str, str] = Field(default_factory=dict)
    sign: bool = Field(default=False)
    sign_key: str | None = Field(default=None, description="cosign key; keyless when unset")
    dry_run: bool = Field(default=False, description="Stop before publishing")
    scan_cache_ttl: int = Field(default=SCAN_CACHE_TTL, ge=0)
    data_dir: Path = Field(default=DEFAULT_DATA_DIR)

    @field_validator("scanners")
    @classmethod
    def normalize_scanners(cls, value: list[str]) -> list[str]:
        """Lower-case scanner names and drop duplicates, keeping order."""
        seen: list[str] = []
        for name in value:
            name = name.strip().lower()
            if name and name not in seen:
                seen.append(name)
        return seen

    @classmethod
    def resolve(cls, **overrides) -> "GateConfig":
        """Build config with precedence: explicit override > env var > default.

        Overrides whose value is None are treated as not given.
        """
        values = {k: v for k, v in overrides.items() if v is not None}

        if "scanners" not in values:
            env_scanners = os.getenv(ENV_SCANNERS, "").strip()
            if env_scanners:
                values["scanners"] = [s.strip() for s in env_scanners.split(",") if s.strip()]

        env_ints = {
            "concurrency": ENV_CONCURRENCY,
            "scan_timeout": ENV_SCAN_TIMEOUT,
            "scan_retries": ENV_RETRIES,
        }
        for key, env_name in env_ints.items():
            if key in values:
                continue
            raw = os.getenv(env_name, "").strip()
            if not raw:
                continue
            try:
                values[key] = int(raw)
            except ValueError:
                logger.warning(f"Ignoring non-integer {env_name}={raw!r}")

        if "data_dir" not in values and os.getenv(ENV_DATA_DIR):
            values["data_dir"] = Path(os.environ[ENV_DATA_DIR])

        return cls(**values)
