from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import ConfigurationError

DEFAULT_CONF = "/etc/nocache.yaml"


class Settings(BaseSettings):
    # ---- cgroup v1 memory controller ----
    cgroup_root: Path = Path("/sys/fs/cgroup/memory")
    proc_cgroup_file: Path = Path("/proc/self/cgroup")
    enabled: bool = True  # NOCACHE_ENABLED=0 -> run the command without a cgroup

    # ---- defaults for the CLI flags ----
    limit_mb: int = Field(256, gt=0)
    parent_cgroup: str = ""  # empty -> current memory cgroup

    # ---- teardown ----
    rmdir_retries: int = Field(5, ge=1)
    rmdir_delay_s: float = Field(0.1, ge=0)

    # ---- logging ----
    log_level: str = "WARNING"
    log_format: str = "console"  # console | json

    # env prefix NOCACHE_*
    model_config = SettingsConfigDict(env_prefix="NOCACHE_", extra="ignore")


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"cannot load {path}: {e}") from e
    if not isinstance(data, dict):
        return {}
    return data


def load_settings() -> Settings:
    # 0) base from env NOCACHE_*
    try:
        s = Settings()
    except ValidationError as e:
        raise ConfigurationError(f"invalid NOCACHE_* environment: {e}") from e

    # 1) YAML file (NOCACHE_CONF or /etc/nocache.yaml), optional
    conf = Path(os.environ.get("NOCACHE_CONF", DEFAULT_CONF))
    data = _read_yaml(conf)
    if not data:
        return s

    # 2) merge, re-validated so the YAML gets the same checks as env
    known = {k: v for k, v in data.items() if k in Settings.model_fields}
    try:
        return Settings.model_validate({**s.model_dump(), **known})
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings in {conf}: {e}") from e
