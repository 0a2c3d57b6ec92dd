"""Snapshot-before-mutate: apply a local change at once, undo it if the backing request fails."""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def optimistic_update(
    target: Any,
    attr: str,
    value: Any,
    request: Callable[[], Awaitable[T]],
    setter: Optional[Callable[[Any, str, Any], None]] = None,
) -> T:
    """
    Set ``target.attr = value`` immediately, then await ``request()``.

    On failure the previous value is restored and the exception propagates to the caller.
    ``setter`` replaces plain ``setattr`` when the target needs to react to the change
    (e.g. recompute a derived status).
    """
    assign = setter or setattr
    snapshot = getattr(target, attr)
    assign(target, attr, value)
    try:
        result = await request()
    except Exception:
        logger.warning("Optimistic update of %s.%s rolled back", type(target).__name__, attr)
        assign(target, attr, snapshot)
        raise
    return result
