from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

MB = 1024 * 1024

class Status(str, Enum):
    FINISHED = "FINISHED"
    FAILED = "FAILED"

@dataclass(frozen=True)
class SessionConfig:
    limit_bytes: int          # pagecache ceiling, bytes
    parent_path: str          # cgroup path relative to the memory mount, e.g. "/machine.slice"
    command: List[str] = field(default_factory=list)

@dataclass
class Result:
    status: Status
    rc: int
    reason: Optional[str]
    duration_s: float
