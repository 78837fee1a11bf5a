"""Types produced by the regex entity extractors."""

from dataclasses import dataclass
from datetime import time
from typing import Literal, Optional

Daypart = Literal["morning", "afternoon"]
Lang = Literal["es", "en"]

ConstraintKind = Literal["after", "before", "around", "earliest", "any_morning", "any_afternoon"]


@dataclass(frozen=True)
class TimeConstraint:
    """A soft preference over offered times ("after 4", "earliest", ...)."""

    kind: ConstraintKind
    at: Optional[time] = None           # Local time for after/before/around


@dataclass
class ContactInfo:
    """Identity fields found in one message."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    def has_any(self) -> bool:
        """Check if any field was found."""
        return any([self.name, self.email, self.phone])


@dataclass
class AllInOne:
    """Name + email + date-time sent in one message.

    ``datetime_token`` is the raw "YYYY-MM-DD HH:mm" token; validation
    against past and business hours happens in the booking flow.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    datetime_token: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.name and self.email and self.datetime_token)
