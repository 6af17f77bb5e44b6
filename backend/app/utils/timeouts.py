"""
Bounded collaborator calls — runs slow external calls on a worker pool and
gives up after a deadline.
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable

from app.utils.exceptions import CollaboratorTimeout

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="collaborator")


def call_with_timeout(fn: Callable[..., Any], timeout: float, *args, **kwargs) -> Any:
    """Run ``fn`` and return its result, or raise CollaboratorTimeout.

    Exceptions raised by ``fn`` propagate unchanged. A timed-out call keeps
    running in the background; its result is discarded.
    """
    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        name = getattr(fn, "__qualname__", repr(fn))
        raise CollaboratorTimeout(f"{name} did not respond within {timeout:g}s")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
