"""Clock collaborator. Components take a zero-arg callable returning an aware UTC datetime."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
