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

from typing import Any
from dataclasses import dataclass, field

from widetable.data._helpers import _encode_key
from widetable.data.exceptions import ConfigurationError

# special value for SetCell mutation timestamps. If set, server will assign a timestamp
SERVER_SIDE_TIMESTAMP = -1


class Mutation:
    """Model class for mutations"""

    def _to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def is_idempotent(self) -> bool:
        """
        Check if the mutation is idempotent
        If false, the mutation will not be retried
        """
        return True

    def __str__(self) -> str:
        return str(self._to_dict())


@dataclass
class SetCell(Mutation):
    family: str
    qualifier: bytes
    new_value: bytes | str | int
    timestamp_micros: int = SERVER_SIDE_TIMESTAMP

    def __post_init__(self):
        if isinstance(self.qualifier, str):
            self.qualifier = self.qualifier.encode()
        if isinstance(self.new_value, str):
            self.new_value = self.new_value.encode()
        elif isinstance(self.new_value, int):
            self.new_value = self.new_value.to_bytes(8, "big", signed=True)
        if self.timestamp_micros < SERVER_SIDE_TIMESTAMP:
            raise ConfigurationError(
                "timestamp_micros must be positive (or -1 for server-side timestamp)"
            )

    def _to_dict(self) -> dict[str, Any]:
        return {
            "set_cell": {
                "family_name": self.family,
                "column_qualifier": self.qualifier,
                "timestamp_micros": self.timestamp_micros,
                "value": self.new_value,
            }
        }

    def is_idempotent(self) -> bool:
        """Check if the mutation is idempotent"""
        return self.timestamp_micros != SERVER_SIDE_TIMESTAMP


@dataclass
class DeleteRangeFromColumn(Mutation):
    family: str
    qualifier: bytes
    # None represents 0
    start_timestamp_micros: int | None = None
    # None represents infinity
    end_timestamp_micros: int | None = None

    def __post_init__(self):
        if isinstance(self.qualifier, str):
            self.qualifier = self.qualifier.encode()
        if (
            self.start_timestamp_micros is not None
            and self.end_timestamp_micros is not None
            and self.start_timestamp_micros > self.end_timestamp_micros
        ):
            raise ConfigurationError(
                "start_timestamp_micros must be <= end_timestamp_micros"
            )

    def _to_dict(self) -> dict[str, Any]:
        timestamp_range = {}
        if self.start_timestamp_micros is not None:
            timestamp_range["start_timestamp_micros"] = self.start_timestamp_micros
        if self.end_timestamp_micros is not None:
            timestamp_range["end_timestamp_micros"] = self.end_timestamp_micros
        return {
            "delete_from_column": {
                "family_name": self.family,
                "column_qualifier": self.qualifier,
                "time_range": timestamp_range,
            }
        }


@dataclass
class DeleteAllFromFamily(Mutation):
    family_to_delete: str

    def _to_dict(self) -> dict[str, Any]:
        return {
            "delete_from_family": {
                "family_name": self.family_to_delete,
            }
        }


@dataclass
class DeleteAllFromRow(Mutation):
    def _to_dict(self) -> dict[str, Any]:
        return {
            "delete_from_row": {},
        }


class RowMutationEntry:
    """A row key plus the mutations to apply to it atomically in a bulk request"""

    def __init__(self, row_key: bytes | str, mutations: Mutation | list[Mutation]):
        row_key = _encode_key(row_key)
        if isinstance(mutations, Mutation):
            mutations = [mutations]
        if len(mutations) == 0:
            raise ConfigurationError("mutations must not be empty")
        self.row_key = row_key
        self.mutations = tuple(mutations)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "row_key": self.row_key,
            "mutations": [mutation._to_dict() for mutation in self.mutations],
        }

    def is_idempotent(self) -> bool:
        """Check if the mutation is idempotent"""
        return all(mutation.is_idempotent() for mutation in self.mutations)

    def __repr__(self) -> str:
        return f"RowMutationEntry(row_key={self.row_key!r}, mutations={list(self.mutations)})"


@dataclass
class ConditionalMutation:
    """
    A predicate filter and the two mutation branches selected by it.

    The server evaluates the predicate and commits one branch in a single
    call, so a failed call may still have been applied. Conditional
    mutations are therefore never retried.
    """

    predicate: dict[str, Any] | None
    true_case_mutations: list[Mutation] = field(default_factory=list)
    false_case_mutations: list[Mutation] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.true_case_mutations, Mutation):
            self.true_case_mutations = [self.true_case_mutations]
        if isinstance(self.false_case_mutations, Mutation):
            self.false_case_mutations = [self.false_case_mutations]
        if not self.true_case_mutations and not self.false_case_mutations:
            raise ConfigurationError(
                "at least one of true_case_mutations or false_case_mutations must be set"
            )

    def _to_dict(self) -> dict[str, Any]:
        predicate = self.predicate
        if predicate is not None and not isinstance(predicate, dict):
            predicate = predicate._to_dict()
        return {
            "predicate_filter": predicate,
            "true_mutations": [m._to_dict() for m in self.true_case_mutations],
            "false_mutations": [m._to_dict() for m in self.false_case_mutations],
        }

    def is_idempotent(self) -> bool:
        return False
