"""
Memory-based Rate Limiter for guessing endpoints.
Counts identity checks and code requests per client and route within a fixed
window. Attempt budgets on the session are the real limit; this only slows
down scripted guessing. Multi-worker deployments need a shared store.
"""
import time
from typing import Dict, Tuple

from fastapi import HTTPException, Request

# {(client ip, route template): (window start, count, window length)}
_windows: Dict[Tuple[str, str], Tuple[float, int, int]] = {}


def _route_key(request: Request) -> str:
    # Template path, so signing tokens never become keys
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def _prune(now: float) -> None:
    lapsed = [key for key, (started, _, window) in _windows.items() if now - started > window]
    for key in lapsed:
        del _windows[key]


def rate_limit(requests: int, window: int):
    """
    FastAPI dependency factory.
    Example: Depends(rate_limit(requests=5, window=60))
    """
    def limiter(request: Request) -> bool:
        client = request.client.host if request.client else "unknown"
        key = (client, _route_key(request))
        now = time.time()
        _prune(now)

        started, count, _ = _windows.get(key, (now, 0, window))

        if count >= requests:
            retry_after = max(1, int(window - (now - started)))
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                headers={"Retry-After": str(retry_after)},
            )

        _windows[key] = (started, count + 1, window)
        return True

    return limiter


def reset_rate_limits() -> None:
    _windows.clear()
