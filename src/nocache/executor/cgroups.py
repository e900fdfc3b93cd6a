# src/nocache/executor/cgroups.py
from __future__ import annotations
from pathlib import Path
import os, time

import structlog

from ..core.errors import ConfigurationError

log = structlog.get_logger(__name__)

# cgroup v1, memory controller mount
CGROOT = Path("/sys/fs/cgroup/memory")
PROC_SELF_CGROUP = Path("/proc/self/cgroup")

LEAF_PREFIX = "pagecache_limit."

DISABLE_CLEANCACHE = "memory.disable_cleancache"
CACHE_LIMIT = "memory.cache.limit_in_bytes"
TASKS = "tasks"

METRIC_FILES = (
    "memory.usage_in_bytes",
    "memory.max_usage_in_bytes",
    "memory.failcnt",
    "memory.cache.usage_in_bytes",
)


def self_memory_cgroup(proc_cgroup: Path = PROC_SELF_CGROUP) -> str:
    """
    Memory cgroup of the current process, from lines like '4:memory:/user.slice'.
    Comounted controllers ('5:memory,cpuacct:/x') also count.
    """
    try:
        text = Path(proc_cgroup).read_text()
    except OSError as e:
        raise ConfigurationError(f"cannot read {proc_cgroup}: {e.strerror or e}") from e

    for line in text.splitlines():
        parts = line.strip().split(":", 2)
        if len(parts) != 3:
            continue
        if "memory" in parts[1].split(","):
            return parts[2]
    raise ConfigurationError(
        f"no memory cgroup entry in {proc_cgroup} (is the cgroup v1 memory controller mounted?)")


def cgroup_dir(root: Path, cg_path: str) -> Path:
    # cgroup paths are absolute inside the hierarchy, so strip the leading '/'
    return Path(root) / cg_path.lstrip("/")


def leaf_path(root: Path, parent: str, pid: int) -> Path:
    return cgroup_dir(root, parent) / f"{LEAF_PREFIX}{pid}"


def _mkdir(p: Path) -> None:
    p.mkdir()


def _rmdir(p: Path) -> None:
    p.rmdir()


def create_leaf(leaf: Path) -> Path:
    # no parents/exist_ok: a missing parent or a stale leaf is an error here
    _mkdir(leaf)
    log.debug("cgroup.created", path=str(leaf))
    return leaf


def write_control(p: Path, val: str | int) -> None:
    # control files are never created by us; a kernel without the knob -> ENOENT
    fd = os.open(p, os.O_WRONLY | os.O_TRUNC)
    try:
        os.write(fd, f"{val}\n".encode())
    finally:
        os.close(fd)


def _write_then_check(p: Path, val: str | int):
    val = str(val)
    write_control(p, val)
    back = p.read_text().strip()
    if back != val:
        raise OSError(f"write {p}='{val}' but read-back='{back}'")


def set_cache_limits(leaf: Path, limit_bytes: int) -> None:
    """Make clean pages count against the group, then cap the pagecache."""
    _write_then_check(leaf / DISABLE_CLEANCACHE, 1)
    write_control(leaf / CACHE_LIMIT, int(limit_bytes))
    log.debug("cgroup.configured", path=str(leaf), limit_bytes=int(limit_bytes))


def attach(cg: Path, pid: int) -> None:
    write_control(cg / TASKS, pid)
    log.debug("cgroup.attached", path=str(cg), pid=pid)


def read_metrics(leaf: Path) -> dict:
    out: dict[str, str] = {}
    for name in METRIC_FILES:
        p = leaf / name
        if p.exists():
            try:
                out[name] = p.read_text().strip()
            except OSError:
                continue
    return out


def teardown(leaf: Path, retries: int = 5, delay_s: float = 0.1) -> bool:
    """
    Remove the leaf. Returns True if removed, False if it was already gone.
    The group stays busy for a moment while the last tasks exit, so retry;
    the final OSError propagates to the caller.
    """
    attempts = max(1, retries)
    for i in range(attempts):
        try:
            _rmdir(leaf)
            return True
        except FileNotFoundError:
            return False
        except OSError:
            if i == attempts - 1:
                raise
            time.sleep(delay_s)
    return False
