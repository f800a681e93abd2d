import asyncio
import time
from collections import deque
from typing import Deque, Dict

from fastapi import Request

from errors import RateLimited

# Window in seconds (1 minute)
WINDOW_SECONDS = 60


def get_ip_address(request: Request) -> str:
    # Check X-Real-IP, then X-Forwarded-For, then client.host
    ip = request.headers.get("X-Real-IP")
    if not ip:
        xff = request.headers.get("X-Forwarded-For")
        if xff:
            ip = xff.split(",")[0].strip()
    if not ip:
        # request.client may be None in some tests
        ip = request.client.host if request.client else ""
    return ip


class RateLimiter:
    """Sliding-window limiter keyed by an arbitrary identifier.

    A limit below 1 or ``enabled=False`` lets everything through.
    """

    def __init__(self, per_minute: int, enabled: bool = True, clock=time.monotonic):
        self.per_minute = per_minute
        self.enabled = enabled and per_minute > 0
        self.clock = clock
        self._timestamps: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, identifier: str) -> bool:
        if not self.enabled:
            return True
        now = self.clock()
        async with self._lock:
            dq = self._timestamps.setdefault(identifier, deque())
            while dq and (now - dq[0]) > WINDOW_SECONDS:
                dq.popleft()
            if len(dq) >= self.per_minute:
                return False
            dq.append(now)
            return True

    async def check(self, request: Request, action: str) -> None:
        if not await self.allow(f"{action}|{get_ip_address(request)}"):
            raise RateLimited()
