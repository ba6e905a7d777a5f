from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from telemetry_hub.cursor import decode_cursor, encode_cursor
from telemetry_hub.errors import CursorError, StorageError, ValidationError
from telemetry_hub.telemetry import (
    TelemetryQuery,
    TelemetryQueryRequest,
    TelemetryService,
    decode_id_cursor,
    validate_query,
)

from conftest import T0

START = (T0 - timedelta(hours=1)).isoformat()
END = (T0 + timedelta(hours=1)).isoformat()


def _query(**kwargs) -> TelemetryQuery:
    kwargs.setdefault("start_time", START)
    kwargs.setdefault("end_time", END)
    query = validate_query(TelemetryQueryRequest(**kwargs))
    assert isinstance(query, TelemetryQuery), query
    return query


def _ids(page):
    return [int(decode_cursor(edge.cursor)) for edge in page.edges]


@pytest.fixture
def service(get_session):
    return TelemetryService(get_session)


@pytest.fixture
def rows(add_point):
    """Six points, two pairs of them sharing a timestamp.

    Newest-first order with insertion order as tie-break is ids 5, 3, 6, 1, 2, 4.
    """
    return [
        add_point("d1", T0 + timedelta(minutes=1), temp=1.0),
        add_point("d2", T0 + timedelta(minutes=1), temp=2.0),
        add_point("d1", T0 + timedelta(minutes=2), temp=3.0),
        add_point("d1", T0, temp=4.0),
        add_point("d2", T0 + timedelta(minutes=3), temp=5.0),
        add_point("d1", T0 + timedelta(minutes=2), temp=6.0),
    ]


class TestValidateQuery:

    def test_defaults(self):
        query = _query()

        assert query.limit == 100
        assert query.backward is False
        assert query.start_time == T0 - timedelta(hours=1)

    def test_first_wins_over_limit(self):
        assert _query(first=5, limit=10).limit == 5

    def test_last_selects_backward(self):
        query = _query(last=7)
        assert query.backward is True
        assert query.limit == 7

    def test_before_selects_backward(self):
        query = _query(before=encode_cursor("3"))
        assert query.backward is True
        assert query.limit == 100

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"start_time": None}, "start_time"),
            ({"end_time": ""}, "end_time"),
            ({"start_time": "yesterday"}, "start_time"),
            ({"end_time": "2025-13-45T00:00:00Z"}, "end_time"),
            ({"start_time": END, "end_time": START}, "time_range"),
            ({"start_time": START, "end_time": START}, "time_range"),
            ({"after": "MQ==", "before": "Mg=="}, "pagination"),
            ({"first": 1, "last": 1}, "pagination"),
            ({"after": "MQ==", "last": 1}, "pagination"),
            ({"before": "MQ==", "first": 1}, "pagination"),
            ({"limit": 0}, "limit"),
            ({"limit": 1001}, "limit"),
            ({"first": -1}, "limit"),
        ],
    )
    def test_rejects(self, kwargs, field):
        request = {"start_time": START, "end_time": END, **kwargs}
        error = validate_query(TelemetryQueryRequest(**request))

        assert isinstance(error, ValidationError)
        assert error.status_code == 400
        assert error.field == field

    def test_max_limit_is_configurable(self):
        error = validate_query(TelemetryQueryRequest(start_time=START, end_time=END, limit=51), max_limit=50)
        assert isinstance(error, ValidationError)


class TestDecodeIdCursor:

    def test_numeric(self):
        assert decode_id_cursor(encode_cursor("42")) == 42

    @pytest.mark.parametrize("value", ["abc", "-1", "1.5", "1234567890123456789", ""])
    def test_rejects_non_ids(self, value):
        assert isinstance(decode_id_cursor(encode_cursor(value)), CursorError)


class TestForwardPaging:

    def test_first_page_newest_first(self, service, rows):
        page = service.query(_query(first=3))

        assert _ids(page) == [5, 3, 6]
        assert [e.node.temp for e in page.edges] == [5.0, 3.0, 6.0]
        assert page.page_info.has_next_page is True
        assert page.page_info.has_previous_page is False

    def test_walk_visits_every_row_once(self, service, rows):
        seen, after = [], None
        pages = 0
        while True:
            page = service.query(_query(first=3, after=after))
            pages += 1
            seen.extend(_ids(page))
            if not page.page_info.has_next_page:
                break
            after = page.page_info.end_cursor

        assert seen == [5, 3, 6, 1, 2, 4]
        # the full second page still claims more data, the third comes back empty
        assert pages == 3
        assert page.edges == []
        assert page.page_info.has_previous_page is True

    def test_device_filter(self, service, rows):
        page = service.query(_query(device_uuid="d2"))
        assert _ids(page) == [5, 2]

    def test_time_range_bounds_are_inclusive(self, service, rows):
        page = service.query(_query(start_time=T0.isoformat(), end_time=(T0 + timedelta(minutes=1)).isoformat()))
        assert _ids(page) == [1, 2, 4]

    def test_points_carry_utc_times(self, service, rows):
        node = service.query(_query(first=1)).edges[0].node

        assert node.time == T0 + timedelta(minutes=3)
        assert node.time.utcoffset() == timedelta(0)
        assert node.device_uuid == "d2"
        assert node.extras == {}

    def test_missing_anchor_gives_empty_page(self, service, rows):
        page = service.query(_query(after=encode_cursor("999999")))

        assert page.edges == []
        assert page.page_info.has_next_page is False

    @pytest.mark.parametrize("cursor", ["not base64!", encode_cursor("abc")])
    def test_bad_cursor(self, service, rows, cursor):
        error = service.query(_query(after=cursor))

        assert isinstance(error, CursorError)
        assert error.status_code == 400

    def test_storage_failure(self):
        factory = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        error = TelemetryService(factory).query(_query())

        assert isinstance(error, StorageError)
        assert error.status_code == 500
        assert error.message == "Internal server error"


class TestBackwardPaging:

    def test_before_returns_preceding_slice(self, service, rows):
        page = service.query(_query(last=2, before=encode_cursor(str(rows[0].cursor_id))))

        assert _ids(page) == [3, 6]
        assert page.page_info.has_next_page is True
        assert page.page_info.has_previous_page is True

    def test_before_inside_a_tie(self, service, rows):
        page = service.query(_query(last=2, before=encode_cursor(str(rows[1].cursor_id))))
        assert _ids(page) == [6, 1]

    def test_last_without_cursor_is_the_tail(self, service, rows):
        page = service.query(_query(last=3))
        assert _ids(page) == [1, 2, 4]

    def test_short_page_at_the_head(self, service, rows):
        page = service.query(_query(last=5, before=encode_cursor(str(rows[2].cursor_id))))

        assert _ids(page) == [5]
        assert page.page_info.has_previous_page is False


class TestDeviceTimePaging:

    @pytest.fixture
    def points(self, add_point):
        return [
            add_point("d1", T0 + timedelta(minutes=1)),
            add_point("d2", T0 + timedelta(minutes=1)),
            add_point("d1", T0 + timedelta(minutes=2)),
            add_point("d3", T0),
        ]

    def _keys(self, page):
        return [(e.node.device_uuid, e.node.time) for e in page.edges]

    def test_walk(self, service, points):
        first = service.query_by_device_time(_query(first=2))
        second = service.query_by_device_time(_query(first=2, after=first.page_info.end_cursor))

        assert self._keys(first) == [("d1", T0 + timedelta(minutes=2)), ("d1", T0 + timedelta(minutes=1))]
        assert self._keys(second) == [("d2", T0 + timedelta(minutes=1)), ("d3", T0)]
        assert second.page_info.has_previous_page is True

    def test_backward_is_rejected(self, service, points):
        assert isinstance(service.query_by_device_time(_query(last=2)), ValidationError)

    def test_bad_cursor(self, service, points):
        assert isinstance(service.query_by_device_time(_query(after=encode_cursor("nope"))), CursorError)
