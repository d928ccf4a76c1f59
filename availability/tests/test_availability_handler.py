"""
Tests for the availability Lambda handler and its DynamoDB repository
"""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from availability import handler
from availability.service import AvailabilityManagementService, AvailabilityService
from booking.locks import InMemoryProviderLock
from shared.domain.entities import AvailabilityException, AvailabilityTemplate, DayAvailability, TimeRange
from shared.infrastructure.availability_repository import DynamoDBAvailabilityRepository


@pytest.fixture
def invoke(provider_repo, booking_repo):
    availability = AvailabilityService(provider_repo, booking_repo, slot_interval_minutes=60)
    management = AvailabilityManagementService(provider_repo, InMemoryProviderLock())

    def _invoke(field, actor=None, **arguments):
        event = {"info": {"fieldName": field}, "arguments": {"input": arguments}}
        with patch.object(handler, "get_availability_service", return_value=availability), \
                patch.object(handler, "get_management_service", return_value=management), \
                patch.object(handler, "resolve_actor", return_value=actor):
            response = handler.lambda_handler(event, None)
        return response["statusCode"], json.loads(response["body"])
    return _invoke


class TestAvailabilityHandler:

    def test_available_slots(self, invoke, monday):
        status, body = invoke("getAvailableSlots", providerId="pro_1", serviceId="svc_60", date=monday.isoformat())

        assert status == 200
        assert len(body) == 7
        assert body[0]["start"].endswith("T09:00:00Z")

    def test_effective_availability(self, invoke, monday):
        status, body = invoke("getEffectiveAvailability", providerId="pro_1", date=monday.isoformat())

        assert status == 200
        assert [i["start"][11:16] for i in body] == ["09:00", "13:00"]

    def test_provider_id_required(self, invoke):
        status, body = invoke("getEffectiveAvailability", date="2030-01-07")

        assert status == 400
        assert body["kind"] == "INVALID_INPUT"

    def test_owner_blocks_a_date(self, invoke, provider_actor, monday):
        status, body = invoke(
            "addAvailabilityException", provider_actor, providerId="pro_1", date=monday.isoformat(), reason="Holiday"
        )
        assert status == 200
        assert body["fullDay"] is True

        _, slots = invoke("getAvailableSlots", providerId="pro_1", serviceId="svc_60", date=monday.isoformat())
        assert slots == []

    def test_client_cannot_change_template(self, invoke, client_actor):
        status, body = invoke(
            "setDayAvailability", client_actor,
            providerId="pro_1", dayOfWeek="SAT", timeRanges=[{"start": "10:00", "end": "12:00"}]
        )

        assert status == 403
        assert body["kind"] == "UNAUTHORIZED"

    def test_set_day_availability(self, invoke, provider_actor, provider_repo):
        status, body = invoke(
            "setDayAvailability", provider_actor,
            providerId="pro_1", dayOfWeek="sat", timeRanges=[{"start": "10:00", "end": "12:00"}]
        )

        assert status == 200
        assert body["dayOfWeek"] == "SAT"
        assert provider_repo.get_by_id("pro_1").template.for_day("SAT") is not None

    def test_invalid_time_range(self, invoke, provider_actor):
        status, _ = invoke(
            "setDayAvailability", provider_actor,
            providerId="pro_1", dayOfWeek="SAT", timeRanges=[{"start": "12:00", "end": "10:00"}]
        )

        assert status == 400

    def test_remove_missing_exception(self, invoke, provider_actor):
        status, body = invoke("removeAvailabilityException", provider_actor, providerId="pro_1", date="2030-01-01")

        assert status == 404


class TestDynamoDBAvailabilityRepository:

    @pytest.fixture
    def table(self):
        with patch('boto3.resource') as mock_resource:
            table = MagicMock()
            mock_resource.return_value.Table.return_value = table
            yield table

    def test_save_template_puts_and_deletes(self, table):
        repo = DynamoDBAvailabilityRepository("test-providers")
        template = AvailabilityTemplate()
        template.set_day(DayAvailability("MON", [TimeRange("09:00", "17:00")], [TimeRange("12:00", "13:00")]))

        repo.save_template("pro_1", template)

        batch = table.batch_writer.return_value.__enter__.return_value
        put = batch.put_item.call_args.kwargs["Item"]
        assert (put["SK"], put["timeRanges"], put["breaks"]) == (
            "DAY#MON", [{"start": "09:00", "end": "17:00"}], [{"start": "12:00", "end": "13:00"}]
        )
        assert batch.delete_item.call_count == 6

    def test_get_template(self, table):
        table.query.return_value = {"Items": [
            {"SK": "DAY#TUE", "dayOfWeek": "TUE", "timeRanges": [{"start": "08:00", "end": "12:00"}], "breaks": []}
        ]}

        template = DynamoDBAvailabilityRepository("t").get_template("pro_1")

        assert template.for_day("TUE").time_ranges == [TimeRange("08:00", "12:00")]
        assert template.for_day("MON") is None

    def test_exception_round_trip(self, table):
        repo = DynamoDBAvailabilityRepository("t")
        exception = AvailabilityException(
            day=date(2030, 1, 7), time_ranges=[TimeRange("10:00", "12:00")], reason="Short day"
        )

        repo.save_exception("pro_1", exception)
        table.query.return_value = {"Items": [table.put_item.call_args.kwargs["Item"]]}

        assert repo.list_exceptions("pro_1") == [exception]

    def test_list_exceptions_in_range(self, table):
        table.query.return_value = {"Items": []}

        DynamoDBAvailabilityRepository("t").list_exceptions("pro_1", date(2030, 1, 1), date(2030, 1, 31))

        assert table.query.called

    def test_delete_exception(self, table):
        DynamoDBAvailabilityRepository("t").delete_exception("pro_1", date(2030, 1, 7))

        table.delete_item.assert_called_once_with(Key={"PK": "pro_1", "SK": "EXCEPTION#2030-01-07"})
