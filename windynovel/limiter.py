# windynovel/limiter.py
from typing import List, Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from windynovel.config import RATE_LIMIT_DEFAULT, RATE_LIMIT_ENABLED


def build_limiter(
    default_limits: Optional[List[str]] = None,
    enabled: bool = RATE_LIMIT_ENABLED,
    storage_uri: str = "memory://",
) -> Limiter:
    """
    Per-client-IP request limiter.

    Counters live in the limits storage behind ``storage_uri`` using fixed
    windows; an IP's counter is dropped once its window expires. The default
    in-memory storage is process-local and does not survive a restart; point
    ``storage_uri`` at redis:// to share it between workers.
    """
    return Limiter(
        key_func=get_remote_address,
        default_limits=default_limits if default_limits is not None else [RATE_LIMIT_DEFAULT],
        storage_uri=storage_uri,
        strategy="fixed-window",
        enabled=enabled,
    )


# Built once per process; main.py hangs it on app.state and routes decorate with it
limiter = build_limiter()
