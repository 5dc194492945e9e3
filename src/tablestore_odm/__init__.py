from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .converter import INF_MAX, INF_MIN, Bound, FieldDeclaration, FieldType, from_wire, to_wire
from .errors import (
    AlreadyExistsError,
    ConditionBuildError,
    ConditionFailedError,
    ConfigurationError,
    MarshallingError,
    NameValidationError,
    NotFoundError,
    SchemaDefinitionError,
    StoreError,
    TablestoreOdmError,
    TransportError,
    ValidationError,
)
from .filters import (
    ColumnCondition,
    Comparator,
    CompositeCondition,
    FilterFactory,
    FilterNode,
    LogicalOperator,
    build_filter,
    count_conditions,
)
from .model import (
    Schema,
    SearchField,
    SearchFieldMode,
    SearchIndex,
    SecondaryIndex,
    UpdatePatch,
    WireKey,
    ots_field,
    search_field,
    search_index,
    secondary_index,
)
from .query import Cursor, RangePage, RangeQueryBuilder, decode_cursor, encode_cursor
from .results import Result
from .search import (
    FieldSort,
    PrimaryKeySort,
    QueryFactory,
    ScoreSort,
    SearchFragment,
    SearchPage,
    SearchQueryBuilder,
)

if TYPE_CHECKING:
    from .client import StoreClient, TablestoreClient
    from .connection import Connection, StoreCallMetric, TablestoreSettings, instrument_client
    from .schema import (
        build_create_table_request,
        build_search_index_requests,
        create_table,
        delete_table,
        describe_table,
        ensure_table,
    )
    from .table import Table
    from .validation import validate_column_name, validate_index_name, validate_table_name


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except Exception:
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {"StoreClient", "TablestoreClient"}:
        from . import client

        return getattr(client, name)
    if name in {"Connection", "StoreCallMetric", "TablestoreSettings", "instrument_client"}:
        from . import connection

        return getattr(connection, name)
    if name in {
        "build_create_table_request",
        "build_search_index_requests",
        "create_table",
        "delete_table",
        "describe_table",
        "ensure_table",
    }:
        from . import schema

        return getattr(schema, name)
    if name == "Table":
        from .table import Table

        return Table
    if name in {"validate_column_name", "validate_index_name", "validate_table_name"}:
        from . import validation

        return getattr(validation, name)
    raise AttributeError(name)


__all__ = [
    "AlreadyExistsError",
    "Bound",
    "build_create_table_request",
    "build_filter",
    "build_search_index_requests",
    "ColumnCondition",
    "Comparator",
    "CompositeCondition",
    "ConditionBuildError",
    "ConditionFailedError",
    "ConfigurationError",
    "Connection",
    "count_conditions",
    "create_table",
    "Cursor",
    "decode_cursor",
    "delete_table",
    "describe_table",
    "encode_cursor",
    "ensure_table",
    "FieldDeclaration",
    "FieldSort",
    "FieldType",
    "FilterFactory",
    "FilterNode",
    "from_wire",
    "INF_MAX",
    "INF_MIN",
    "instrument_client",
    "LogicalOperator",
    "MarshallingError",
    "NameValidationError",
    "NotFoundError",
    "ots_field",
    "PrimaryKeySort",
    "QueryFactory",
    "RangePage",
    "RangeQueryBuilder",
    "Result",
    "Schema",
    "SchemaDefinitionError",
    "ScoreSort",
    "search_field",
    "search_index",
    "SearchField",
    "SearchFieldMode",
    "SearchFragment",
    "SearchIndex",
    "SearchPage",
    "SearchQueryBuilder",
    "secondary_index",
    "SecondaryIndex",
    "StoreCallMetric",
    "StoreClient",
    "StoreError",
    "Table",
    "TablestoreClient",
    "TablestoreOdmError",
    "TablestoreSettings",
    "to_wire",
    "TransportError",
    "UpdatePatch",
    "validate_column_name",
    "validate_index_name",
    "validate_table_name",
    "ValidationError",
    "WireKey",
    "__repo_version__",
    "__version__",
]
