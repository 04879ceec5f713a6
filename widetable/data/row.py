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

from dataclasses import dataclass, field
from typing import Sequence


@dataclass(frozen=True)
class Cell:
    """
    Model class for cell data

    Does not represent all data contained in the cell, only data returned by a
    query.
    """

    value: bytes
    family: str
    qualifier: bytes
    timestamp_micros: int = 0
    labels: tuple[str, ...] = field(default=())

    def __int__(self) -> int:
        """
        Interprets value as a 64-bit big-endian signed integer
        """
        return int.from_bytes(self.value, byteorder="big", signed=True)


class Row(Sequence[Cell]):
    """
    Model class for row data returned from server

    Does not represent all data contained in the row, only data returned by a
    query. Expected to be read-only to users.
    """

    def __init__(self, key: bytes | str, cells: list[Cell] | None = None):
        if isinstance(key, str):
            key = key.encode("utf-8")
        self.row_key = key
        self.cells: list[Cell] = list(cells or [])

    def get_cells(
        self, family: str | None = None, qualifier: str | bytes | None = None
    ) -> list[Cell]:
        """
        Returns cells matching the family and qualifier, in delivery order.

        If family or qualifier not passed, will include all
        """
        if family is None:
            if qualifier is not None:
                raise ValueError("Qualifier passed without family")
            return list(self.cells)
        if isinstance(qualifier, str):
            qualifier = qualifier.encode("utf-8")
        return [
            cell
            for cell in self.cells
            if cell.family == family and (qualifier is None or cell.qualifier == qualifier)
        ]

    def __getitem__(self, index):
        return self.cells[index]

    def __len__(self):
        return len(self.cells)

    def __eq__(self, other):
        if not isinstance(other, Row):
            return False
        return self.row_key == other.row_key and self.cells == other.cells

    def __repr__(self):
        return f"Row(key={self.row_key!r}, cells={self.cells!r})"
