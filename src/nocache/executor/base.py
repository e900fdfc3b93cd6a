from __future__ import annotations
from typing import List

import structlog

from ..runner.command import CommandRunner

log = structlog.get_logger(__name__)

class Session:
    def start(self): ...
    def run(self, command: List[str]) -> int: ...
    def stop(self): ...

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
        return False

class PassthroughSession(Session):
    """No cgroup at all: used when confinement is switched off (NOCACHE_ENABLED=0)."""

    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    def start(self):
        log.warning("cgroup.disabled", hint="running command without pagecache limit")

    def run(self, command: List[str]) -> int:
        return self.runner.run(command).rc

    def stop(self):
        return None
