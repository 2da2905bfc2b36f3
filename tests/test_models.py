"""Tests for upstream payload parsing and tracking record invariants."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import mot_test, vehicle_payload
from pydantic import ValidationError as PydanticValidationError

from motwatch.detect import UpdateKind
from motwatch.models.history import TestResult, VehicleRecord, latest_test
from motwatch.models.results import PollResult
from motwatch.models.tracking import CheckOutcome, PushEndpoint, TrackedVehicle, UpdateDetails

T1 = datetime(2024, 1, 10, tzinfo=UTC)
T2 = datetime(2024, 7, 2, tzinfo=UTC)

# ------------------------------------------------------------------
# Upstream payloads
# ------------------------------------------------------------------


class TestVehicleRecord:
    def test_camel_case_payload(self) -> None:
        record = VehicleRecord.model_validate(
            vehicle_payload(
                "AB12CDE",
                mot_test(
                    "2024-07-02T10:15:00.000Z",
                    "passed",
                    expiryDate="2025-07-01",
                    defects=[{"type": "ADVISORY", "text": "Tyre worn close to limit", "dangerous": False}],
                ),
            )
        )

        assert record.registration == "AB12CDE"
        assert record.primary_colour == "Blue"
        test = record.mot_tests[0]
        assert test.completed_date == datetime(2024, 7, 2, 10, 15, tzinfo=UTC)
        assert test.test_result == TestResult.PASSED
        assert test.passed
        assert test.expiry_date == datetime(2025, 7, 1, tzinfo=UTC)
        assert test.defects[0].type == "ADVISORY"

    def test_sentinels_fall_back_to_defaults(self) -> None:
        record = VehicleRecord.model_validate({"registration": "AB12CDE", "make": "", "model": "null"})

        assert record.make == ""
        assert record.model == ""
        assert record.mot_tests == []
        assert record.raw["model"] == "null"

    def test_raw_is_not_serialized(self) -> None:
        record = VehicleRecord.model_validate(vehicle_payload("AB12CDE"))
        assert "raw" not in record.model_dump()


class TestLatestTest:
    def test_picks_greatest_completed_date(self) -> None:
        record = VehicleRecord.model_validate(
            vehicle_payload(
                "AB12CDE",
                mot_test("2023-01-10", motTestNumber="1"),
                mot_test("2024-07-02", motTestNumber="2"),
                mot_test("2022-05-05", motTestNumber="3"),
            )
        )
        test = latest_test(record)
        assert test is not None
        assert test.mot_test_number == "2"

    def test_tie_keeps_first_in_upstream_order(self) -> None:
        record = VehicleRecord.model_validate(
            vehicle_payload(
                "AB12CDE",
                mot_test("2024-07-02T10:00:00Z", "FAILED", motTestNumber="first"),
                mot_test("2024-07-02T10:00:00Z", "PASSED", motTestNumber="second"),
            )
        )
        test = latest_test(record)
        assert test is not None
        assert test.mot_test_number == "first"

    def test_no_tests_or_undated_tests(self) -> None:
        assert latest_test(VehicleRecord.model_validate(vehicle_payload("AB12CDE"))) is None
        undated = VehicleRecord.model_validate(vehicle_payload("AB12CDE", mot_test("")))
        assert latest_test(undated) is None


# ------------------------------------------------------------------
# Tracking records
# ------------------------------------------------------------------


def _details(new_date: datetime, previous: datetime | None = None) -> UpdateDetails:
    return UpdateDetails(previous_date=previous, new_date=new_date, test_result="PASSED")


class TestTrackedVehicle:
    def test_pending_update_requires_details(self) -> None:
        with pytest.raises(PydanticValidationError):
            TrackedVehicle(id="AB12CDE", pending_update=True)

    def test_update_outcome_sets_baseline_and_pending(self) -> None:
        vehicle = TrackedVehicle(id="AB12CDE")
        checked_at = datetime(2024, 8, 1, tzinfo=UTC)
        outcome = CheckOutcome(
            kind=UpdateKind.FIRST_OBSERVATION,
            latest_test_date=T1,
            details=_details(T1),
            checked_at=checked_at,
        )

        updated = vehicle.with_check_result(outcome)

        assert updated.baseline_test_date == T1
        assert updated.pending_update
        assert updated.pending_update_details == _details(T1)
        assert updated.pending_update_detected_at == checked_at
        assert updated.last_checked_at == checked_at

    def test_stale_update_never_regresses_baseline(self) -> None:
        vehicle = TrackedVehicle(id="AB12CDE", baseline_test_date=T2)
        outcome = CheckOutcome(kind=UpdateKind.NEW_TEST, latest_test_date=T1, details=_details(T1))

        updated = vehicle.with_check_result(outcome)

        assert updated.baseline_test_date == T2
        assert not updated.pending_update
        assert updated.last_checked_at == outcome.checked_at

    def test_no_change_clears_previous_error(self) -> None:
        vehicle = TrackedVehicle(id="AB12CDE", baseline_test_date=T1, last_check_error="HTTP 500")
        updated = vehicle.with_check_result(CheckOutcome(kind=UpdateKind.NO_CHANGE, latest_test_date=T1))

        assert updated.last_check_error is None
        assert updated.baseline_test_date == T1

    def test_update_outcome_requires_details(self) -> None:
        with pytest.raises(PydanticValidationError):
            CheckOutcome(kind=UpdateKind.NEW_TEST, latest_test_date=T2)


class TestPushEndpoint:
    def test_subscription_info_shape(self) -> None:
        endpoint = PushEndpoint.model_validate(
            {"endpoint": "https://push.example/abc", "expirationTime": None, "keys": {"p256dh": "P", "auth": "A"}}
        )
        assert endpoint.subscription_info() == {
            "endpoint": "https://push.example/abc",
            "keys": {"p256dh": "P", "auth": "A"},
        }

    @pytest.mark.parametrize(
        "payload",
        [
            {"endpoint": "ftp://push.example/abc", "keys": {"p256dh": "P", "auth": "A"}},
            {"endpoint": "https://push.example/abc", "keys": {"p256dh": "P"}},
            {"endpoint": "https://push.example/abc"},
        ],
    )
    def test_rejects_incomplete_subscriptions(self, payload: dict[str, object]) -> None:
        with pytest.raises(PydanticValidationError):
            PushEndpoint.model_validate(payload)


class TestPollResult:
    def test_no_update_response_marks_vehicle_monitored(self) -> None:
        result = PollResult(registration="AB12CDE", has_update=False, last_mot_test_date=T1)
        body = result.to_response()

        assert body == {
            "hasUpdate": False,
            "registration": "AB12CDE",
            "lastCheckedDate": None,
            "lastMotTestDate": "2024-01-10T00:00:00Z",
            "isMonitored": True,
        }

    def test_update_response_carries_details(self) -> None:
        result = PollResult(
            registration="AB12CDE",
            has_update=True,
            last_mot_test_date=T2,
            update_detected_at=T2,
            details=_details(T2, previous=T1),
        )
        body = result.to_response()

        assert body["hasUpdate"] is True
        assert body["updateDetectedAt"] == "2024-07-02T00:00:00Z"
        assert body["details"]["previousDate"] == "2024-01-10T00:00:00Z"
        assert body["details"]["testResult"] == "PASSED"
        assert "isMonitored" not in body
