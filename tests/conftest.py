import errno
import os
from pathlib import Path

import pytest
import structlog

from nocache.executor import cgroups

# what the kernel puts into every new memory cgroup (the subset we touch)
CONTROL_FILES = {
    cgroups.TASKS: "",
    cgroups.DISABLE_CLEANCACHE: "0\n",
    cgroups.CACHE_LIMIT: "9223372036854771712\n",
    "memory.usage_in_bytes": "0\n",
    "memory.failcnt": "0\n",
}


class FakeCgroupFS:
    """cgroup v1 memory hierarchy emulated in a tmp dir.

    mkdir populates control files and rmdir drops them, like cgroupfs does.
    Writing a pid to a `tasks` file moves it out of every other group, and a
    group whose `tasks` still lists a pid cannot be removed (EBUSY).
    `missing` names control files a "kernel" does not provide; `busy` makes
    the next N rmdir calls fail with EBUSY.
    """

    def __init__(self, root: Path, write_control):
        self.root = root
        self.missing = set()
        self.busy = 0
        self.rmdir_calls = 0
        self._write_control = write_control
        self.root.mkdir(parents=True)
        self._populate(self.root)

    def write_control(self, p: Path, val):
        p = Path(p)
        if p.name != cgroups.TASKS:
            return self._write_control(p, val)
        if not p.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(p))
        pid = str(val).strip()
        for tasks in self.root.rglob(cgroups.TASKS):
            members = [line for line in tasks.read_text().split() if line != pid]
            tasks.write_text("".join(f"{m}\n" for m in members))
        with open(p, "a") as f:
            f.write(f"{pid}\n")

    def members(self, d: Path):
        return (d / cgroups.TASKS).read_text().split()

    def _populate(self, d: Path):
        for name, content in CONTROL_FILES.items():
            if name not in self.missing:
                (d / name).write_text(content)

    def add_group(self, cg_path: str) -> Path:
        d = cgroups.cgroup_dir(self.root, cg_path)
        d.mkdir(parents=True)
        self._populate(d)
        return d

    def mkdir(self, p: Path):
        p.mkdir()
        self._populate(p)

    def rmdir(self, p: Path):
        self.rmdir_calls += 1
        if not p.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(p))
        if self.busy or ((p / cgroups.TASKS).exists() and self.members(p)):
            self.busy = max(0, self.busy - 1)
            raise OSError(errno.EBUSY, os.strerror(errno.EBUSY), str(p))
        for f in p.iterdir():
            if f.is_file():
                f.unlink()
        p.rmdir()

    def leaves(self, cg_path: str):
        return sorted(cgroups.cgroup_dir(self.root, cg_path).glob(cgroups.LEAF_PREFIX + "*"))


@pytest.fixture
def cgfs(tmp_path, monkeypatch):
    fs = FakeCgroupFS(tmp_path / "memory", cgroups.write_control)
    monkeypatch.setattr(cgroups, "_mkdir", fs.mkdir)
    monkeypatch.setattr(cgroups, "_rmdir", fs.rmdir)
    monkeypatch.setattr(cgroups, "write_control", fs.write_control)
    return fs


@pytest.fixture
def proc_cgroup(tmp_path):
    def _write(text: str) -> Path:
        p = tmp_path / "proc_self_cgroup"
        p.write_text(text)
        return p
    return _write


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for k in list(os.environ):
        if k.startswith("NOCACHE_"):
            monkeypatch.delenv(k)
    monkeypatch.setenv("NOCACHE_CONF", str(tmp_path / "absent.yaml"))
    yield
    structlog.reset_defaults()
