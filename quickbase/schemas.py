"""
Request/response shapes passed between the client, the executor and callers.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ApiAction:
    """One logical API call. Built fresh by each endpoint method."""
    path: str
    method: str = "GET"
    params: Optional[Dict[str, Any]] = None
    body: Any = None
    request_options: Optional[Dict[str, Any]] = None


@dataclass
class ApiResponse:
    """Full response envelope returned in pass-through mode."""
    status: int
    headers: Mapping[str, str]
    body: Any


@dataclass
class DebugHeaders:
    date: Optional[str] = None
    ray_id: Optional[str] = None
    ratelimit_remaining: Optional[int] = None
    ratelimit_limit: Optional[int] = None
    ratelimit_reset: Optional[int] = None


@dataclass
class TempTokenState:
    """
    The temporary token currently held and the app/table dbid it was issued for.
    A temp token is only valid against that dbid, so renewals reuse it.
    """
    token: str = ""
    dbid: Optional[str] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def set(self, token: str, dbid: Optional[str] = None) -> None:
        with self.lock:
            self.token = token or ""
            self.dbid = dbid or None

    def snapshot(self) -> Tuple[str, Optional[str]]:
        with self.lock:
            return self.token, self.dbid
