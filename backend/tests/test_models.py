from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError, TypeAdapter

from models import (
    BloodRequestStatus, FulfillmentRequest, GeoPoint, ResourceGroupLine, UrgencyLevel
)
from models.request import load_request

from conftest import NOW


@pytest.mark.parametrize("raw,expected", [
    ("Emergency", UrgencyLevel.EMERGENCY),
    ("critical", UrgencyLevel.EMERGENCY),
    ("High", UrgencyLevel.URGENT),
    ("medium", UrgencyLevel.STANDARD),
    ("Low", UrgencyLevel.PLANNED),
])
def test_urgency_aliases(raw, expected):
    assert UrgencyLevel(raw) is expected


def test_fulfilled_cannot_exceed_requested():
    with pytest.raises(ValidationError):
        ResourceGroupLine(blood_group="A+", units_requested=2, units_fulfilled=3)


def test_geopoint_rejects_out_of_range_coordinates():
    with pytest.raises(ValidationError):
        GeoPoint.of(200, 10)


def test_naive_datetimes_are_read_as_utc():
    request = TypeAdapter(FulfillmentRequest).validate_python({
        "kind": "blood", "batch_id": "B", "hospital_id": "h", "ngo_id": "n",
        "resource_groups": [], "required_by": datetime(2024, 6, 2, 12, 0),
    })
    assert request.required_by == NOW + timedelta(days=1)


def test_stored_document_rebuilds_concrete_kind():
    request = load_request({
        "_id": "mongo-object-id", "kind": "organ", "batch_id": "B", "hospital_id": "h",
        "ngo_id": "n", "resource_groups": [{"blood_group": "O+", "units_requested": 1}],
        "required_by": NOW.isoformat(), "organ_type": "Heart", "urgency_level": "Emergency",
    })
    assert request.status.value == "Registered"
    assert request.priority == 1


def test_blood_status_enum_is_closed():
    with pytest.raises(ValueError):
        BloodRequestStatus("Matched")


def test_status_history_is_append_only():
    request = load_request({
        "kind": "blood", "batch_id": "B", "hospital_id": "h", "ngo_id": "n",
        "resource_groups": [], "required_by": NOW.isoformat(),
    })
    assert isinstance(request.status_history, tuple)
    with pytest.raises(AttributeError):
        request.status_history.append("x")
