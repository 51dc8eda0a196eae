"""
Client-side offline record types.
"""

import time
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from formqueue.constants import (
    DEFAULT_MAX_ATTEMPTS,
    OFFLINE_ID_PREFIX,
    JobKind,
    OfflineStatus,
)
from formqueue.types.job import random_suffix, utcnow


def generate_offline_id() -> str:
    """``offline-<epoch millis>-<9 base36 chars>``."""
    return f"{OFFLINE_ID_PREFIX}{int(time.time() * 1000)}-{random_suffix(9)}"


class OfflineRecord(BaseModel):
    """
    A submission that could not be confirmed delivered to the queue server.

    Keyed by ``id`` in the offline store. ``IN_FLIGHT`` marks a record whose
    resubmission is currently on the wire.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=generate_offline_id)
    type: str = JobKind.FORM_SUBMISSION.value
    data: dict[str, Any]
    timestamp: datetime = Field(default_factory=utcnow)
    status: OfflineStatus = OfflineStatus.PENDING
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    claimed_at: datetime | None = None

    @property
    def is_exhausted(self) -> bool:
        """Check if resubmission attempts are used up."""
        return self.attempts >= self.max_attempts

    @property
    def in_flight(self) -> bool:
        return self.status == OfflineStatus.IN_FLIGHT
