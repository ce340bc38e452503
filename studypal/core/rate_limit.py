"""
In-memory sliding-window rate limiting.

Each RateLimitStore is created with the application and lives as long as the
process. It is single-instance only; a multi-instance deployment needs a
shared external store.
"""
import logging
import time
from typing import Callable, Dict, List
from fastapi import Request, HTTPException, status

logger = logging.getLogger(__name__)


class RateLimitStore:
    """Timestamps of recent hits per client key."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, List[float]] = {}

    def _prune(self, key: str) -> List[float]:
        cutoff = self._clock() - self.window_seconds
        recent = [timestamp for timestamp in self._hits.get(key, ()) if timestamp > cutoff]
        if recent:
            self._hits[key] = recent
        else:
            self._hits.pop(key, None)
        return recent

    def is_limited(self, key: str) -> bool:
        """Check whether the key has used up its window without recording a hit."""
        return len(self._prune(key)) >= self.max_requests

    def _sweep(self) -> None:
        cutoff = self._clock() - self.window_seconds
        for key in [key for key, hits in self._hits.items() if hits[-1] <= cutoff]:
            del self._hits[key]

    def record(self, key: str) -> None:
        self._sweep()
        recent = self._prune(key)
        recent.append(self._clock())
        self._hits[key] = recent

    def tracked_keys(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request."""
    # Check for forwarded IP (from proxy/load balancer)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def check_rate_limit(request: Request, store: RateLimitStore, message: str = None) -> None:
    """
    Check and record a hit for the calling client.

    Raises:
        HTTPException: 429 if rate limit exceeded
    """
    ip = get_client_ip(request)

    if store.is_limited(ip):
        logger.warning(
            f"Rate limit exceeded for IP: {ip} "
            f"({store.max_requests} requests in {store.window_seconds}s)"
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=message or (
                f"Rate limit exceeded. Maximum {store.max_requests} requests "
                f"per {store.window_seconds} seconds."
            )
        )

    store.record(ip)
