"""Outcome types returned by every remote ledger call."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, Tuple, TypeVar, Union

from ledger_sync.exceptions import MalformedPayloadError

T = TypeVar("T")


class TerminalKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    MALFORMED = "malformed"
    OTHER = "other"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class RetryableError:
    """Timeouts, network failures, 5xx and 429 responses."""
    message: str
    status_code: Optional[int] = None
    retry_after: Optional[float] = None  # seconds, as instructed by the server
    attempts: int = 1


@dataclass(frozen=True)
class TerminalError:
    """Failures that retrying will not fix."""
    kind: TerminalKind
    message: str
    status_code: Optional[int] = None
    details: Tuple[str, ...] = ()


Result = Union[Ok[T], RetryableError, TerminalError]


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    has_more: bool
    page: int
    rejected: List[MalformedPayloadError] = field(default_factory=list)
