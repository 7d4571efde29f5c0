"""SDK response types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class SubmitResult:
    """Accepted event.

    Attributes
    ----------
    id : int
        Server-assigned event id.
    received_at : datetime
        Server receive time.
    duplicate : bool
        Whether the server had already stored this ``event_id``.
    """

    id: int
    received_at: datetime
    duplicate: bool = False
