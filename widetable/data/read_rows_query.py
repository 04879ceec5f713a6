# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
from __future__ import annotations
from typing import Any, Iterable, Union
from dataclasses import dataclass

from widetable.data._helpers import _encode_key
from widetable.data.exceptions import ConfigurationError


@dataclass(frozen=True)
class _RangePoint:
    """Model class for a point in a row range"""

    key: bytes
    is_inclusive: bool


class RowRange:
    """
    A contiguous interval of row keys.

    Either bound may be None, meaning the range is unbounded in that
    direction. RowRange() is a full table scan. Instances are immutable;
    narrowing produces new ranges.
    """

    __slots__ = ("start", "end")

    def __init__(
        self,
        start_key: str | bytes | None = None,
        end_key: str | bytes | None = None,
        start_is_inclusive: bool | None = None,
        end_is_inclusive: bool | None = None,
    ):
        # check for invalid combinations of arguments
        if start_is_inclusive is None:
            start_is_inclusive = True
        elif start_key is None:
            raise ConfigurationError("start_is_inclusive must be set with start_key")
        if end_is_inclusive is None:
            end_is_inclusive = False
        elif end_key is None:
            raise ConfigurationError("end_is_inclusive must be set with end_key")
        if start_key is not None:
            start_key = _encode_key(start_key, "start_key")
        if end_key is not None:
            end_key = _encode_key(end_key, "end_key")

        self.start: _RangePoint | None = (
            _RangePoint(start_key, start_is_inclusive)
            if start_key is not None
            else None
        )
        self.end: _RangePoint | None = (
            _RangePoint(end_key, end_is_inclusive) if end_key is not None else None
        )

    @classmethod
    def _from_points(
        cls, start: _RangePoint | None, end: _RangePoint | None
    ) -> RowRange:
        """Creates a RowRange from two RangePoints"""
        kwargs: dict[str, Any] = {}
        if start is not None:
            kwargs["start_key"] = start.key
            kwargs["start_is_inclusive"] = start.is_inclusive
        if end is not None:
            kwargs["end_key"] = end.key
            kwargs["end_is_inclusive"] = end.is_inclusive
        return cls(**kwargs)

    @classmethod
    def _from_dict(cls, data: dict[str, bytes]) -> RowRange:
        """Creates a RowRange from a dictionary"""
        start_key = data.get("start_key_closed", data.get("start_key_open"))
        end_key = data.get("end_key_closed", data.get("end_key_open"))
        start_is_inclusive = "start_key_closed" in data if start_key else None
        end_is_inclusive = "end_key_closed" in data if end_key else None
        return cls(start_key, end_key, start_is_inclusive, end_is_inclusive)

    def _to_dict(self) -> dict[str, bytes]:
        """Converts this object to a dictionary"""
        output = {}
        if self.start is not None:
            key = "start_key_closed" if self.start.is_inclusive else "start_key_open"
            output[key] = self.start.key
        if self.end is not None:
            key = "end_key_closed" if self.end.is_inclusive else "end_key_open"
            output[key] = self.end.key
        return output

    def is_empty(self) -> bool:
        """True if no row key can fall inside this range"""
        if self.start is None or self.end is None:
            return False
        if self.start.key == self.end.key:
            return not (self.start.is_inclusive and self.end.is_inclusive)
        return self.start.key > self.end.key

    def contains(self, row_key: str | bytes) -> bool:
        row_key = _encode_key(row_key)
        if self.start is not None:
            if row_key < self.start.key:
                return False
            if row_key == self.start.key and not self.start.is_inclusive:
                return False
        if self.end is not None:
            if row_key > self.end.key:
                return False
            if row_key == self.end.key and not self.end.is_inclusive:
                return False
        return True

    def retain_rows_after(self, row_key: str | bytes) -> RowRange | None:
        """
        Returns the part of this range strictly after row_key, or None if the
        whole range is at or before it.
        """
        row_key = _encode_key(row_key)
        if self.end is not None and self.end.key <= row_key:
            return None
        if self.start is None or self.start.key <= row_key:
            return RowRange._from_points(_RangePoint(row_key, False), self.end)
        return self

    def retain_rows_before(self, row_key: str | bytes) -> RowRange | None:
        """
        Returns the part of this range strictly before row_key, or None if the
        whole range is at or after it. Used to resume reversed scans.
        """
        row_key = _encode_key(row_key)
        if self.start is not None and self.start.key >= row_key:
            return None
        if self.end is None or self.end.key >= row_key:
            return RowRange._from_points(self.start, _RangePoint(row_key, False))
        return self

    def __eq__(self, other) -> bool:
        if not isinstance(other, RowRange):
            return NotImplemented
        return self.start == other.start and self.end == other.end

    def __hash__(self) -> int:
        return hash((self.start, self.end))

    def __bool__(self) -> bool:
        """
        Empty RowRanges (representing a full table scan) are falsy, because
        they can be substituted with None. Non-empty RowRanges are truthy.
        """
        return self.start is not None or self.end is not None

    def __repr__(self) -> str:
        if self.start is None:
            start = "(-inf"
        else:
            start = f"{'[' if self.start.is_inclusive else '('}{self.start.key!r}"
        if self.end is None:
            end = "+inf)"
        else:
            end = f"{self.end.key!r}{']' if self.end.is_inclusive else ')'}"
        return f"RowRange{start}, {end}"


class RowList:
    """An ordered, immutable list of explicit row keys to read"""

    __slots__ = ("row_keys",)

    def __init__(self, row_keys: Iterable[str | bytes] = ()):
        self.row_keys: tuple[bytes, ...] = tuple(_encode_key(k) for k in row_keys)

    def valid(self) -> bool:
        return len(self.row_keys) > 0

    def retain_rows_after(self, row_key: str | bytes) -> RowList:
        """Drops every key at or before row_key, preserving order"""
        row_key = _encode_key(row_key)
        return RowList(k for k in self.row_keys if k > row_key)

    def retain_rows_before(self, row_key: str | bytes) -> RowList:
        """Drops every key at or after row_key, preserving order"""
        row_key = _encode_key(row_key)
        return RowList(k for k in self.row_keys if k < row_key)

    def _to_dict(self) -> dict[str, Any]:
        return {"row_keys": list(self.row_keys), "row_ranges": []}

    def __iter__(self):
        return iter(self.row_keys)

    def __len__(self):
        return len(self.row_keys)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RowList):
            return NotImplemented
        return self.row_keys == other.row_keys

    def __hash__(self) -> int:
        return hash(self.row_keys)

    def __repr__(self) -> str:
        return f"RowList({list(self.row_keys)!r})"


class RowRangeList:
    """An ordered, immutable list of row ranges to read"""

    __slots__ = ("row_ranges",)

    def __init__(self, row_ranges: Iterable[RowRange | dict[str, bytes]] = ()):
        ranges = []
        for r in row_ranges:
            if isinstance(r, dict):
                r = RowRange._from_dict(r)
            elif not isinstance(r, RowRange):
                raise ConfigurationError("row_ranges must contain RowRange or dict")
            ranges.append(r)
        self.row_ranges: tuple[RowRange, ...] = tuple(ranges)

    def valid(self) -> bool:
        return any(not r.is_empty() for r in self.row_ranges)

    def retain_rows_after(self, row_key: str | bytes) -> RowRangeList:
        """
        Drops ranges entirely at or before row_key and truncates the range
        containing it to start just after row_key. Later ranges keep their
        original order.
        """
        row_key = _encode_key(row_key)
        retained = (r.retain_rows_after(row_key) for r in self.row_ranges)
        return RowRangeList(r for r in retained if r is not None and not r.is_empty())

    def retain_rows_before(self, row_key: str | bytes) -> RowRangeList:
        """Mirror of retain_rows_after, for reversed scans"""
        row_key = _encode_key(row_key)
        retained = (r.retain_rows_before(row_key) for r in self.row_ranges)
        return RowRangeList(r for r in retained if r is not None and not r.is_empty())

    def _to_dict(self) -> dict[str, Any]:
        return {"row_keys": [], "row_ranges": [r._to_dict() for r in self.row_ranges]}

    def __iter__(self):
        return iter(self.row_ranges)

    def __len__(self):
        return len(self.row_ranges)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RowRangeList):
            return NotImplemented
        return self.row_ranges == other.row_ranges

    def __hash__(self) -> int:
        return hash(self.row_ranges)

    def __repr__(self) -> str:
        return f"RowRangeList({list(self.row_ranges)!r})"


RowSet = Union[RowList, RowRangeList]


class ReadRowsQuery:
    """
    Class to encapsulate details of a read row request
    """

    def __init__(
        self,
        row_keys: list[str | bytes] | str | bytes | None = None,
        row_ranges: list[RowRange] | RowRange | None = None,
        limit: int | None = None,
        row_filter: dict[str, Any] | None = None,
        reverse: bool = False,
    ):
        """
        Create a new ReadRowsQuery

        A query reads either an explicit list of keys or a list of ranges,
        never both. With neither, the whole table is scanned.

        Args:
          - row_keys: row keys to include in the query, visited in key order
          - row_ranges: ranges of rows to include in the query
          - limit: the maximum number of rows to return. None or 0 means no limit
                default: None (no limit)
          - row_filter: a filter to apply to the query, passed through to the server
          - reverse: if True, rows are returned in descending key order
        Raises:
          - ConfigurationError if both row_keys and row_ranges are set, or if
              limit or reverse are invalid
        """
        if row_keys is not None and row_ranges is not None:
            raise ConfigurationError("row_keys and row_ranges cannot both be set")
        if row_keys is not None:
            if not isinstance(row_keys, list):
                row_keys = [row_keys]
            self.row_set: RowSet = RowList(row_keys)
        elif row_ranges is not None:
            if isinstance(row_ranges, RowRange):
                row_ranges = [row_ranges]
            self.row_set = RowRangeList(row_ranges)
        else:
            self.row_set = RowRangeList([RowRange()])
        self.limit = limit
        self.reverse = reverse
        self.filter = row_filter

    @classmethod
    def from_row_set(
        cls,
        row_set: RowSet | RowRange,
        limit: int | None = None,
        row_filter: dict[str, Any] | None = None,
        reverse: bool = False,
    ) -> ReadRowsQuery:
        """Build a query around an existing RowList, RowRangeList or RowRange"""
        if isinstance(row_set, RowRange):
            row_set = RowRangeList([row_set])
        elif not isinstance(row_set, (RowList, RowRangeList)):
            raise ConfigurationError(
                f"unsupported row set type: {type(row_set).__name__}"
            )
        query = cls(limit=limit, row_filter=row_filter, reverse=reverse)
        query.row_set = row_set
        return query

    @property
    def limit(self) -> int | None:
        return self._limit

    @limit.setter
    def limit(self, new_limit: int | None):
        """
        Set the maximum number of rows to return by this query.

        None or 0 means no limit

        Raises:
          - ConfigurationError if new_limit is < 0 or not an integer
        """
        if new_limit is not None:
            if isinstance(new_limit, bool) or not isinstance(new_limit, int):
                raise ConfigurationError("limit must be an integer")
            if new_limit < 0:
                raise ConfigurationError("limit must be >= 0")
        self._limit = new_limit

    @property
    def reverse(self) -> bool:
        return self._reverse

    @reverse.setter
    def reverse(self, reverse: bool):
        if not isinstance(reverse, bool):
            raise ConfigurationError("reverse must be a bool")
        self._reverse = reverse

    def _to_dict(self) -> dict[str, Any]:
        """
        Convert this query into a dictionary that can be used to construct a
        ReadRowsRequest
        """
        final_dict: dict[str, Any] = {
            "rows": self.row_set._to_dict(),
        }
        if self.filter:
            final_dict["filter"] = self.filter
        if self.limit:
            final_dict["rows_limit"] = self.limit
        if self.reverse:
            final_dict["reversed"] = True
        return final_dict

    def __eq__(self, other):
        if not isinstance(other, ReadRowsQuery):
            return False
        return (
            self.row_set == other.row_set
            and self.filter == other.filter
            and (self.limit or None) == (other.limit or None)
            and self.reverse == other.reverse
        )

    def __repr__(self):
        return f"ReadRowsQuery(row_set={self.row_set!r}, row_filter={self.filter}, limit={self.limit}, reverse={self.reverse})"
