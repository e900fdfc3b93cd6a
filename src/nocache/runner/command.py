from __future__ import annotations
import subprocess
import time
from typing import List, Optional

import structlog

from ..core.errors import LaunchError
from ..core.models import Result, Status

log = structlog.get_logger(__name__)


def normalize_rc(rc: int) -> int:
    # Popen reports death-by-signal N as -N; shells report 128+N
    return 128 - rc if rc < 0 else rc


class CommandRunner:
    """Runs one child command in the foreground, inheriting stdio and cgroup."""

    def __init__(self):
        self.proc: Optional[subprocess.Popen] = None

    def run(self, cmd: List[str]) -> Result:
        if not cmd:
            raise LaunchError(cmd, None, "empty command")

        start = time.time()
        try:
            self.proc = subprocess.Popen(cmd)
        except OSError as e:
            raise LaunchError(cmd, e.errno, f"{cmd[0]}: {e.strerror or e}") from e

        log.debug("child.started", pid=self.proc.pid, cmd=cmd)
        try:
            # no timeout: blocks until the child exits or a signal handler raises
            rc = normalize_rc(self.proc.wait())
        finally:
            self.proc = None

        dur = time.time() - start
        status = Status.FINISHED if rc == 0 else Status.FAILED
        reason = None if rc == 0 else f"exit_{rc}"
        return Result(status=status, rc=rc, reason=reason, duration_s=dur)

    def forward(self, signum: int) -> None:
        """Pass a signal on to the running child, if there is one."""
        proc = self.proc
        if proc is None or proc.poll() is not None:
            return
        try:
            proc.send_signal(signum)
        except ProcessLookupError:
            return
        log.debug("child.signalled", pid=proc.pid, signum=signum)
