"""
Relay-style page assembly.

Rows arrive already fetched and already ordered newest-first; this module only
turns them into ``edges`` + ``pageInfo``. ``hasNextPage`` is a window-saturation
heuristic: a page that comes back exactly full reports more data even if the
range happens to end right there. No second count query is issued.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence, TypeVar

from .cursor import encode_composite_cursor, encode_cursor
from .schemas import Edge, Page, PageInfo

Row = TypeVar("Row")
Node = TypeVar("Node")


@dataclass(frozen=True)
class PaginationParams:
    limit: int
    after: Optional[str] = None
    before: Optional[str] = None
    backward: bool = False


def create_paginated_result(
    rows: Sequence[Row],
    params: PaginationParams,
    to_node: Callable[[Row], Node],
    to_cursor: Callable[[Row], str],
) -> Page:
    window = list(rows[: params.limit])
    edges = [Edge(cursor=to_cursor(row), node=to_node(row)) for row in window]
    saturated = len(rows) >= params.limit

    if params.backward:
        has_next, has_previous = params.before is not None, saturated
    else:
        has_next, has_previous = saturated, params.after is not None

    return Page(
        edges=edges,
        page_info=PageInfo(
            has_next_page=has_next,
            has_previous_page=has_previous,
            start_cursor=edges[0].cursor if edges else None,
            end_cursor=edges[-1].cursor if edges else None,
        ),
    )


def id_cursor(get_id: Callable[[Row], object]) -> Callable[[Row], str]:
    return lambda row: encode_cursor(str(get_id(row)))


def composite_cursor(get_key: Callable[[Row], tuple[str, datetime]]) -> Callable[[Row], str]:
    def _encode(row):
        device_uuid, time = get_key(row)
        return encode_composite_cursor(device_uuid, time)
    return _encode
