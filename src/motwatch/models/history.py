"""Vehicle history models returned by the upstream MOT API."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from motwatch.models._base import MotBaseModel, MotTimestamp


class TestResult(StrEnum):
    """Known MOT outcomes. Upstream may send values outside this set."""

    __test__ = False

    PASSED = "PASSED"
    FAILED = "FAILED"


class Defect(MotBaseModel):
    """A single advisory, minor, major or dangerous item on a test."""

    type: str = ""
    text: str = ""
    dangerous: bool = False


class MotTest(MotBaseModel):
    """One completed MOT test."""

    completed_date: MotTimestamp = None
    """When the test was completed (UTC)."""
    test_result: str = ""
    """``PASSED``/``FAILED`` or whatever upstream reports."""
    expiry_date: MotTimestamp = None
    """Certificate expiry, present on passes."""
    odometer_value: str | None = None
    odometer_unit: str | None = None
    mot_test_number: str | None = None
    defects: list[Defect] = Field(default_factory=list)

    @field_validator("test_result", mode="before")
    @classmethod
    def _upper_result(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @property
    def passed(self) -> bool:
        return self.test_result == TestResult.PASSED


class VehicleRecord(MotBaseModel):
    """Vehicle descriptor and full test list for one registration."""

    registration: str = ""
    make: str = ""
    model: str = ""
    primary_colour: str = ""
    fuel_type: str = ""
    first_used_date: MotTimestamp = None
    mot_tests: list[MotTest] = Field(default_factory=list)


def latest_test(record: VehicleRecord) -> MotTest | None:
    """Return the test with the greatest ``completed_date``.

    Tests without a completion date are ignored. Ties keep the first test in
    upstream order, so the choice is deterministic for identical payloads.
    """
    best: MotTest | None = None
    for test in record.mot_tests:
        if test.completed_date is None:
            continue
        if best is None or test.completed_date > best.completed_date:  # type: ignore[operator]
            best = test
    return best
