"""Result models reported by the scheduler, dispatcher and poll protocol."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from motwatch.models.tracking import UpdateDetails
from motwatch.normalize import isoformat_or_none


class RunSummary(BaseModel):
    """Counters for one scheduler run."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    checked: int = 0
    updated: int = 0
    errors: int = 0


class DispatchResult(BaseModel):
    """Outcome of fanning one update out to a vehicle's devices."""

    model_config = ConfigDict(frozen=True)

    sent: int = 0
    failed: int = 0
    deactivated: int = 0


class PollResult(BaseModel):
    """Answer to a poll for pending updates on one registration."""

    model_config = ConfigDict(frozen=True)

    registration: str
    has_update: bool
    last_checked_date: datetime | None = None
    last_mot_test_date: datetime | None = None
    update_detected_at: datetime | None = None
    details: UpdateDetails | None = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "hasUpdate": self.has_update,
            "registration": self.registration,
            "lastCheckedDate": isoformat_or_none(self.last_checked_date),
            "lastMotTestDate": isoformat_or_none(self.last_mot_test_date),
        }
        if self.has_update and self.details is not None:
            body["updateDetectedAt"] = isoformat_or_none(self.update_detected_at)
            body["details"] = self.details.model_dump(mode="json", by_alias=True)
        else:
            body["isMonitored"] = True
        return body
