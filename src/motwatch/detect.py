"""Deterministic update classification.

This module intentionally contains *no* I/O. Callers fetch the latest test
date upstream and the baseline from the store, then ask :func:`detect`
whether subscribers need to hear about it.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum


class UpdateKind(StrEnum):
    NO_CHANGE = "no_change"
    FIRST_OBSERVATION = "first_observation"
    NEW_TEST = "new_test"

    @property
    def is_update(self) -> bool:
        return self is not UpdateKind.NO_CHANGE


def detect(latest_test_date: datetime | None, stored_baseline: datetime | None) -> UpdateKind:
    """Classify the freshly fetched latest test date against the baseline.

    Policy:
    - No upstream test: nothing to report, and the baseline is left alone.
    - No baseline yet: the first observed test counts as an update.
    - Both present: only a strictly later timestamp is a new test. Equal or
      earlier upstream dates never move the baseline.
    """
    if latest_test_date is None:
        return UpdateKind.NO_CHANGE
    if stored_baseline is None:
        return UpdateKind.FIRST_OBSERVATION
    if latest_test_date > stored_baseline:
        return UpdateKind.NEW_TEST
    return UpdateKind.NO_CHANGE
