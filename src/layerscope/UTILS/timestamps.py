"""
Timestamp type for runtime-written JSON.

pydantic parses Go's RFC 3339 form (up to nine fractional digits,
truncated to microseconds); this module only adds the conventions of
Docker's files on top.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BeforeValidator


def empty_as_none(value: Any) -> Any:
    """Older runtimes write "" for times that were never set."""
    return None if value == "" else value


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalises to UTC; times without an offset are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


Timestamp = Annotated[Optional[datetime], BeforeValidator(empty_as_none), AfterValidator(as_utc)]
