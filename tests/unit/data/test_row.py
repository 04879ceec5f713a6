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

import pytest

TEST_VALUE = b"1234"
TEST_ROW_KEY = b"row"
TEST_FAMILY_ID = "cf1"
TEST_QUALIFIER = b"col"
TEST_TIMESTAMP = 1234567890


class TestRow:
    @staticmethod
    def _get_target_class():
        from widetable.data.row import Row

        return Row

    def _make_one(self, *args, **kwargs):
        return self._get_target_class()(*args, **kwargs)

    def _make_cell(
        self,
        value=TEST_VALUE,
        family=TEST_FAMILY_ID,
        qualifier=TEST_QUALIFIER,
        timestamp=TEST_TIMESTAMP,
    ):
        from widetable.data.row import Cell

        return Cell(value, family, qualifier, timestamp)

    def test_ctor(self):
        cells = [self._make_cell(), self._make_cell()]
        row_response = self._make_one(TEST_ROW_KEY, cells)
        assert row_response.row_key == TEST_ROW_KEY
        assert list(row_response) == cells
        assert len(row_response) == 2
        assert row_response[1] == cells[1]

    def test_str_key(self):
        assert self._make_one("row").row_key == b"row"

    def test_get_cells(self):
        cell_list = [
            self._make_cell(family="1", qualifier=b"a"),
            self._make_cell(family="1", qualifier=b"b"),
            self._make_cell(family="2", qualifier=b"a"),
        ]
        row = self._make_one(TEST_ROW_KEY, cell_list)
        assert row.get_cells() == cell_list
        assert row.get_cells("1") == cell_list[:2]
        assert row.get_cells("1", "b") == [cell_list[1]]
        assert row.get_cells("2", b"a") == [cell_list[2]]
        assert row.get_cells("3") == []

    def test_get_cells_qualifier_without_family(self):
        row = self._make_one(TEST_ROW_KEY, [self._make_cell()])
        with pytest.raises(ValueError):
            row.get_cells(qualifier=b"a")

    def test___eq__(self):
        cells = [self._make_cell()]
        assert self._make_one(TEST_ROW_KEY, cells) == self._make_one(TEST_ROW_KEY, cells)
        assert self._make_one(TEST_ROW_KEY, cells) != self._make_one(b"other", cells)
        assert self._make_one(TEST_ROW_KEY, cells) != self._make_one(TEST_ROW_KEY)
        assert self._make_one(TEST_ROW_KEY) != object()

    def test___repr__(self):
        assert repr(self._make_one(b"k")) == "Row(key=b'k', cells=[])"


class TestCell:
    def test_int_value(self):
        from widetable.data.row import Cell

        cell = Cell((9).to_bytes(8, "big", signed=True), "f", b"q")
        assert int(cell) == 9

    def test_frozen(self):
        import dataclasses

        from widetable.data.row import Cell

        cell = Cell(b"v", "f", b"q")
        with pytest.raises(dataclasses.FrozenInstanceError):
            cell.value = b"x"
        assert cell.labels == ()
        assert cell.timestamp_micros == 0
