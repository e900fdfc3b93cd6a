import errno
import signal

import pytest

from nocache.core.errors import LaunchError
from nocache.core.models import Status
from nocache.runner.command import CommandRunner, normalize_rc


@pytest.mark.parametrize("rc,expected", [(0, 0), (3, 3), (-9, 137), (-15, 143)])
def test_normalize_rc(rc, expected):
    assert normalize_rc(rc) == expected


def test_run_success():
    res = CommandRunner().run(["true"])
    assert res.status == Status.FINISHED
    assert res.rc == 0 and res.reason is None
    assert res.duration_s >= 0


def test_run_failure():
    res = CommandRunner().run(["sh", "-c", "exit 7"])
    assert res.status == Status.FAILED
    assert res.rc == 7
    assert res.reason == "exit_7"


def test_run_killed_by_signal():
    res = CommandRunner().run(["sh", "-c", "kill -KILL $$"])
    assert res.rc == 128 + signal.SIGKILL


def test_not_found():
    with pytest.raises(LaunchError) as ei:
        CommandRunner().run(["/nonexistent/cmd"])
    assert ei.value.errno == errno.ENOENT
    assert ei.value.exit_code == 127
    assert ei.value.command == ["/nonexistent/cmd"]


def test_not_executable(tmp_path):
    script = tmp_path / "script.sh"
    script.write_text("#!/bin/sh\nexit 0\n")
    script.chmod(0o644)
    with pytest.raises(LaunchError) as ei:
        CommandRunner().run([str(script)])
    assert ei.value.exit_code == 126


def test_empty_command():
    with pytest.raises(LaunchError):
        CommandRunner().run([])


def test_forward_without_child_is_noop():
    r = CommandRunner()
    r.forward(signal.SIGINT)
    assert r.proc is None


def test_status_values():
    # an interrupted run unwinds with SessionInterrupted; it never yields a Result
    assert {s.value for s in Status} == {"FINISHED", "FAILED"}
