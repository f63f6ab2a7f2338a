"""Tests for the batch normalizer."""

import pytest

from apps.ingestor.normalizer import normalize_batch, normalize_event
from utils.errors import MalformedEvent, UnparseableTimestamp

from tests.conftest import make_event


class TestNormalizeEvent:
    def test_full_event(self):
        raw = make_event(
            "e1",
            "2024-01-01T00:00:00Z",
            type="track",
            name="Signed Up",
            userId="u1",
            sessionId="s1",
            properties={"plan": "pro"},
            session={"device": "ios"},
            extra_field=[1, 2],
        )
        record = normalize_event(raw)

        assert record.id == "e1"
        assert record.timestamp_ms == 1_704_067_200_000
        assert record.type == "track"
        assert record.name == "Signed Up"
        assert record.user_id == "u1"
        assert record.session_id == "s1"
        assert record.properties == {"plan": "pro"}
        assert record.session == {"device": "ios"}
        assert record.raw is raw

    def test_non_string_fields_become_none(self):
        record = normalize_event(make_event("e1", 5, type=3, name=None, userId={"id": 1}, sessionId=False))
        assert record.type is None
        assert record.name is None
        assert record.user_id is None
        assert record.session_id is None
        assert record.properties is None
        assert record.session is None

    def test_raw_left_unmodified(self):
        raw = make_event("e1", "1700000000000", properties={"a": 1})
        snapshot = dict(raw)
        normalize_event(raw)
        assert raw == snapshot


class TestNormalizeBatch:
    def test_oldest_timestamp(self):
        batch = normalize_batch([make_event("a", 30), make_event("b", 10), make_event("c", 20)])
        assert batch.ok
        assert [r.id for r in batch.records] == ["a", "b", "c"]
        assert batch.oldest_timestamp_ms == 10

    def test_empty(self):
        batch = normalize_batch([])
        assert batch.ok
        assert batch.records == []
        assert batch.oldest_timestamp_ms is None

    def test_unparseable_timestamp_is_reported(self):
        batch = normalize_batch([make_event("a", 1), make_event("b", "whenever"), make_event("c", 3)])
        assert not batch.ok
        assert isinstance(batch.failure, UnparseableTimestamp)
        assert batch.failure.event_id == "b"
        assert batch.failure.value == "whenever"

    def test_missing_id_is_reported(self):
        batch = normalize_batch([{"timestamp": 1}])
        assert isinstance(batch.failure, MalformedEvent)

    @pytest.mark.parametrize("item", ["not-an-event", 42, None, ["id", "a"]])
    def test_non_object_event_is_reported(self, item):
        batch = normalize_batch([make_event("a", 1), item])
        assert isinstance(batch.failure, MalformedEvent)
        assert [r.id for r in batch.records] == ["a"]

    def test_out_of_range_timestamp_is_unparseable(self):
        batch = normalize_batch([make_event("a", "99999999999999999")])
        assert isinstance(batch.failure, UnparseableTimestamp)
        assert batch.failure.event_id == "a"
