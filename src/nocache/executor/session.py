# src/nocache/executor/session.py
from __future__ import annotations
import os
import signal
import threading
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from . import cgroups
from .base import Session
from ..core.errors import (
    ConfigurationError,
    ResourceConfigurationError,
    ResourceCreationError,
    SessionInterrupted,
)
from ..core.models import SessionConfig
from ..runner.command import CommandRunner

log = structlog.get_logger(__name__)

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class CgroupSession(Session):
    """
    One pagecache-limited memory cgroup, from mkdir to rmdir.

    Lifecycle:
      start() -> mkdir <parent>/pagecache_limit.<pid>, write cache knobs, move self in
      run()   -> child inherits the cgroup, block until it exits
      stop()  -> move self back to parent, rmdir; safe to call any number of times

    SIGINT/SIGTERM/SIGHUP between start() and stop() forward the signal to the
    child, run stop() and raise SessionInterrupted out of whatever was blocking.
    """

    def __init__(
        self,
        parent_path: str,
        limit_bytes: int,
        *,
        cgroup_root: Path = cgroups.CGROOT,
        pid: Optional[int] = None,
        runner: Optional[CommandRunner] = None,
        rmdir_retries: int = 5,
        rmdir_delay_s: float = 0.1,
    ):
        if int(limit_bytes) <= 0:
            raise ConfigurationError(f"pagecache limit must be positive, got {limit_bytes}")
        self.parent_path = parent_path
        self.limit_bytes = int(limit_bytes)
        self.cgroup_root = Path(cgroup_root)
        # resolved once; the wrapper's pid names the leaf and is what gets migrated
        self.pid = os.getpid() if pid is None else pid
        self.parent_dir = cgroups.cgroup_dir(self.cgroup_root, parent_path)
        self.session_path = cgroups.leaf_path(self.cgroup_root, parent_path, self.pid)
        self.runner = runner or CommandRunner()
        self.rmdir_retries = rmdir_retries
        self.rmdir_delay_s = rmdir_delay_s

        self.created = False
        self.attached = False
        self._started = False
        self._interrupted = False
        self._prev_handlers: Dict[int, object] = {}
        self.log = log.bind(cgroup=str(self.session_path), pid=self.pid)

    @classmethod
    def from_config(cls, cfg: SessionConfig, **kw) -> "CgroupSession":
        return cls(cfg.parent_path, cfg.limit_bytes, **kw)

    @staticmethod
    def resolve_parent(explicit_parent: Optional[str],
                       proc_cgroup: Path = cgroups.PROC_SELF_CGROUP) -> str:
        if explicit_parent:
            return explicit_parent
        return cgroups.self_memory_cgroup(proc_cgroup)

    # ------------ lifecycle ------------

    def start(self):
        if self._started:
            raise RuntimeError(f"session {self.session_path} already started")
        self._started = True
        self._install_handlers()

        # set before the fs op: a signal landing right after it must still clean up
        self.created = True
        try:
            cgroups.create_leaf(self.session_path)
        except OSError as e:
            # never remove a leaf we did not create (stale dir from a reused pid)
            self.created = False
            self._restore_handlers()
            raise ResourceCreationError(
                f"cannot create cgroup {self.session_path}: {e.strerror or e}") from e

        try:
            cgroups.set_cache_limits(self.session_path, self.limit_bytes)
        except OSError as e:
            self.stop()
            raise ResourceConfigurationError(
                f"cannot configure pagecache limit in {self.session_path}: {e.strerror or e}") from e

        # writing our pid to the parent's tasks is harmless if we never got in
        self.attached = True
        try:
            cgroups.attach(self.session_path, self.pid)
        except OSError as e:
            self.stop()
            raise ResourceConfigurationError(
                f"cannot move pid {self.pid} into {self.session_path}: {e.strerror or e}") from e

        self.log.info("cgroup.ready", limit_bytes=self.limit_bytes)
        return self

    def run(self, command: List[str]) -> int:
        if not self.attached:
            raise RuntimeError("session not started")
        res = self.runner.run(command)
        self.log.info("child.exited", rc=res.rc, status=res.status.value,
                      reason=res.reason, duration_s=round(res.duration_s, 3))
        metrics = cgroups.read_metrics(self.session_path)
        if metrics:
            self.log.debug("cgroup.usage", **metrics)
        return res.rc

    def stop(self):
        """Migrate out and remove the leaf; every step is a no-op once done."""
        if self.attached:
            try:
                # a populated cgroup cannot be removed
                cgroups.attach(self.parent_dir, self.pid)
            except OSError as e:
                self.log.warning("cgroup.detach_failed", err=str(e))
            self.attached = False

        if self.created:
            if not self.session_path.exists():
                self.created = False
            else:
                try:
                    removed = cgroups.teardown(self.session_path, self.rmdir_retries, self.rmdir_delay_s)
                except OSError as e:
                    # child already ran; its exit code matters more than a leftover group
                    self.log.error("cgroup.remove_failed", err=str(e))
                else:
                    self.created = False
                    self.log.debug("cgroup.removed" if removed else "cgroup.already_gone")

        self._restore_handlers()

    # ------------ signals ------------

    def _install_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            self.log.debug("signals.not_main_thread")
            return
        for signum in INTERRUPT_SIGNALS:
            self._prev_handlers[signum] = signal.signal(signum, self._on_signal)

    def _restore_handlers(self):
        while self._prev_handlers:
            signum, prev = self._prev_handlers.popitem()
            signal.signal(signum, prev if prev is not None else signal.SIG_DFL)

    def _on_signal(self, signum, frame):
        if self._interrupted:
            return
        self._interrupted = True
        self.log.warning("session.interrupted", signum=signum)
        self.runner.forward(signum)
        self.stop()
        raise SessionInterrupted(signum)
