from __future__ import annotations
import errno as _errno
from typing import List, Optional


class NocacheError(Exception):
    """Base for every wrapper-side failure; `exit_code` is what the CLI exits with."""
    exit_code = 125


class ConfigurationError(NocacheError):
    """Parent cgroup cannot be resolved (or settings are unusable)."""


class ResourceCreationError(NocacheError):
    """Session cgroup directory could not be created."""


class ResourceConfigurationError(NocacheError):
    """Control attribute write or self-migration failed."""


class LaunchError(NocacheError):
    """Child command could not be located or started."""

    def __init__(self, command: List[str], err: Optional[int], message: str):
        super().__init__(message)
        self.command = list(command)
        self.errno = err
        # same convention as env(1)/timeout(1): 127 not found, 126 not runnable
        self.exit_code = 127 if err == _errno.ENOENT else 126


class SessionInterrupted(NocacheError):
    """Raised from the signal handler after the cgroup has been torn down."""

    def __init__(self, signum: int):
        super().__init__(f"interrupted by signal {signum}")
        self.signum = signum
        self.exit_code = 128 + signum
