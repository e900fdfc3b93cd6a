from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from .core.errors import ConfigurationError, NocacheError, SessionInterrupted
from .core.models import MB, SessionConfig
from .executor.base import PassthroughSession, Session
from .executor.session import CgroupSession
from .logging import setup_logging
from .settings import Settings, load_settings

EPILOG = """\
examples:
  nocache backup_script.sh
  nocache -limit 128 -pcgroup /machine.slice backup_script.sh
"""


class _Parser(argparse.ArgumentParser):
    # invalid invocation is exit 1, not argparse's 2
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _limit_mb(val: str) -> int:
    try:
        n = int(val)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid limit: {val!r}")
    if n <= 0:
        raise argparse.ArgumentTypeError(f"limit must be a positive number of MB, got {n}")
    return n


def build_parser(s: Settings) -> argparse.ArgumentParser:
    ap = _Parser(
        prog="nocache",
        description="Run a command in a separate memory cgroup with limited pagecache.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    ap.add_argument("-limit", type=_limit_mb, default=s.limit_mb, metavar="LIMIT",
                    help="pagecache limit in MB (default: %(default)s)")
    ap.add_argument("-pcgroup", default=s.parent_cgroup, metavar="PARENT_CGROUP",
                    help="parent memory cgroup (default: current memory cgroup)")
    ap.add_argument("command", nargs=argparse.REMAINDER, help="command with options")
    return ap


def parse_args(argv: Optional[List[str]], s: Settings) -> SessionConfig:
    """Returns the config with `parent_path` still unresolved (possibly empty)."""
    ap = build_parser(s)
    args = ap.parse_args(argv)
    cmd = list(args.command)
    if cmd and cmd[0] == "--":
        cmd = cmd[1:]
    if not cmd:
        ap.error("a command to run is required")
    return SessionConfig(limit_bytes=args.limit * MB, parent_path=args.pcgroup, command=cmd)


def build_session(cfg: SessionConfig, s: Settings) -> Session:
    if not s.enabled:
        return PassthroughSession()
    parent = CgroupSession.resolve_parent(cfg.parent_path, s.proc_cgroup_file)
    return CgroupSession(
        parent,
        cfg.limit_bytes,
        cgroup_root=s.cgroup_root,
        rmdir_retries=s.rmdir_retries,
        rmdir_delay_s=s.rmdir_delay_s,
    )


def _execute(session: Session, command: List[str]) -> int:
    try:
        session.start()
        return session.run(command)
    except SessionInterrupted:
        raise
    except NocacheError as e:
        print(f"nocache: {e}", file=sys.stderr)
        return e.exit_code
    finally:
        session.stop()


def main(argv: Optional[List[str]] = None) -> int:
    try:
        s = load_settings()
    except ConfigurationError as e:
        print(f"nocache: {e}", file=sys.stderr)
        return e.exit_code

    cfg = parse_args(argv, s)
    log = setup_logging(s.log_level, s.log_format)

    try:
        session = build_session(cfg, s)
    except ConfigurationError as e:
        print(f"nocache: {e}", file=sys.stderr)
        return e.exit_code

    try:
        rc = _execute(session, cfg.command)
    except SessionInterrupted as e:
        # cgroup is already gone; the child may still be exiting
        rc = e.exit_code
    log.debug("nocache.exit", rc=rc)
    return rc


def run():
    sys.exit(main())
