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

from widetable.data._async.client import DataClientAsync
from widetable.data._async.client import TableAsync

from widetable.data._retry import RetryClassifier
from widetable.data._retry import RetryPolicy
from widetable.data._transport import DataTransport
from widetable.data._transport import CheckAndMutateRowResponse
from widetable.data._transport import MutateRowsResponse
from widetable.data._transport import ReadRowsResponse

from widetable.data.read_rows_query import ReadRowsQuery
from widetable.data.read_rows_query import RowRange
from widetable.data.read_rows_query import RowList
from widetable.data.read_rows_query import RowRangeList
from widetable.data.row import Row
from widetable.data.row import Cell

from widetable.data.mutations import Mutation
from widetable.data.mutations import RowMutationEntry
from widetable.data.mutations import ConditionalMutation
from widetable.data.mutations import SetCell
from widetable.data.mutations import DeleteRangeFromColumn
from widetable.data.mutations import DeleteAllFromFamily
from widetable.data.mutations import DeleteAllFromRow

from widetable.data.exceptions import InvalidChunk
from widetable.data.exceptions import ConfigurationError
from widetable.data.exceptions import FailedMutationEntryError
from widetable.data.exceptions import MutationsExceptionGroup
from widetable.data.exceptions import RetryExceptionGroup

from widetable import __version__


__all__ = (
    "DataClientAsync",
    "TableAsync",
    "RetryClassifier",
    "RetryPolicy",
    "DataTransport",
    "CheckAndMutateRowResponse",
    "MutateRowsResponse",
    "ReadRowsResponse",
    "RowRange",
    "RowList",
    "RowRangeList",
    "ReadRowsQuery",
    "Row",
    "Cell",
    "Mutation",
    "RowMutationEntry",
    "ConditionalMutation",
    "SetCell",
    "DeleteRangeFromColumn",
    "DeleteAllFromFamily",
    "DeleteAllFromRow",
    "InvalidChunk",
    "ConfigurationError",
    "FailedMutationEntryError",
    "MutationsExceptionGroup",
    "RetryExceptionGroup",
    "__version__",
)
