from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

import tablestore as ots

from .converter import INF_MAX, INF_MIN
from .filters import ColumnCondition, FilterNode
from .ots_errors import map_client_error, map_service_error
from .search import FieldSort, PrimaryKeySort, ScoreSort, SearchFragment, Sorter


class StoreClient(Protocol):
    def get_range(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def search(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def get_row(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def put_row(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def update_row(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def delete_row(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def batch_write_row(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def create_table(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def delete_table(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def describe_table(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def create_search_index(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def delete_search_index(self, **kwargs: Any) -> Mapping[str, Any]: ...


_SEARCH_FIELD_TYPES = {
    "KEYWORD": ots.FieldType.KEYWORD,
    "TEXT": ots.FieldType.TEXT,
    "LONG": ots.FieldType.LONG,
    "DOUBLE": ots.FieldType.DOUBLE,
    "BOOLEAN": ots.FieldType.BOOLEAN,
    "GEO_POINT": ots.FieldType.GEOPOINT,
    "NESTED": ots.FieldType.NESTED,
}


@contextmanager
def _sdk_errors() -> Iterator[None]:
    try:
        yield
    except ots.OTSServiceError as err:
        raise map_service_error(err) from err
    except ots.OTSClientError as err:
        raise map_client_error(err) from err


class TablestoreClient:
    """Translates plain request records into Tablestore SDK calls and back."""

    def __init__(self, client: ots.OTSClient) -> None:
        self._client = client

    def get_range(
        self,
        *,
        table_name: str,
        direction: str,
        inclusive_start_primary_key: Sequence[tuple[str, Any]],
        exclusive_end_primary_key: Sequence[tuple[str, Any]],
        limit: int | None = None,
        columns_to_get: Sequence[str] | None = None,
        column_filter: FilterNode | None = None,
    ) -> dict[str, Any]:
        with _sdk_errors():
            _, next_start, rows, _ = self._client.get_range(
                table_name,
                ots.Direction.BACKWARD if direction == "BACKWARD" else ots.Direction.FORWARD,
                _to_sdk_cells(inclusive_start_primary_key),
                _to_sdk_cells(exclusive_end_primary_key),
                columns_to_get=list(columns_to_get) if columns_to_get is not None else None,
                limit=limit,
                column_filter=_to_sdk_filter(column_filter),
                max_version=1,
            )
        return {
            "rows": [_row_record(row) for row in rows or []],
            "next_start_primary_key": _from_sdk_cells(next_start) if next_start else None,
        }

    def search(
        self,
        *,
        table_name: str,
        index_name: str,
        query: SearchFragment,
        collapse: str | None = None,
        sort: Sequence[Sorter] | None = None,
        next_token: bytes | None = None,
        limit: int | None = None,
        offset: int | None = None,
        get_total_count: bool = True,
        columns_to_get: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        search_query = ots.SearchQuery(
            _to_sdk_query(query),
            sort=_to_sdk_sort(sort),
            get_total_count=get_total_count,
            next_token=next_token,
            offset=None if next_token else offset,
            limit=limit,
            collapse_field=ots.Collapse(collapse) if collapse else None,
        )
        projection = columns_to_get or {"return_type": "ALL"}
        if projection.get("return_type") == "SPECIFIED":
            columns = ots.ColumnsToGet(
                column_names=list(projection.get("column_names") or []),
                return_type=ots.ColumnReturnType.SPECIFIED,
            )
        else:
            columns = ots.ColumnsToGet(return_type=ots.ColumnReturnType.ALL)

        with _sdk_errors():
            resp = self._client.search(table_name, index_name, search_query, columns)

        if isinstance(resp, tuple):
            rows, token, total_count, is_all_succeed = resp[:4]
        else:
            rows, token = resp.rows, resp.next_token
            total_count, is_all_succeed = resp.total_count, resp.is_all_succeed
        return {
            "rows": [_row_record(row) for row in rows or []],
            "next_token": token or None,
            "total_count": total_count,
            "is_all_succeed": bool(is_all_succeed),
        }

    def get_row(
        self,
        *,
        table_name: str,
        primary_key: Sequence[tuple[str, Any]],
        columns_to_get: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        with _sdk_errors():
            _, row, _ = self._client.get_row(
                table_name,
                _to_sdk_cells(primary_key),
                columns_to_get=list(columns_to_get) if columns_to_get is not None else None,
                max_version=1,
            )
        return {"row": _row_record(row) if row is not None else None}

    def put_row(
        self,
        *,
        table_name: str,
        primary_key: Sequence[tuple[str, Any]],
        attribute_columns: Sequence[tuple[str, Any]],
        expectation: str = "IGNORE",
    ) -> dict[str, Any]:
        row = ots.Row(_to_sdk_cells(primary_key), _to_sdk_cells(attribute_columns))
        with _sdk_errors():
            self._client.put_row(table_name, row, _condition(expectation))
        return {}

    def update_row(
        self,
        *,
        table_name: str,
        primary_key: Sequence[tuple[str, Any]],
        update_of_attribute_columns: Mapping[str, Sequence[Any]],
        expectation: str = "EXPECT_EXIST",
    ) -> dict[str, Any]:
        columns: dict[str, list[Any]] = {}
        if update_of_attribute_columns.get("PUT"):
            columns["PUT"] = _to_sdk_cells(update_of_attribute_columns["PUT"])
        if update_of_attribute_columns.get("DELETE_ALL"):
            columns["DELETE_ALL"] = list(update_of_attribute_columns["DELETE_ALL"])

        row = ots.Row(_to_sdk_cells(primary_key), columns)
        with _sdk_errors():
            self._client.update_row(table_name, row, _condition(expectation))
        return {}

    def delete_row(
        self,
        *,
        table_name: str,
        primary_key: Sequence[tuple[str, Any]],
        expectation: str = "EXPECT_EXIST",
    ) -> dict[str, Any]:
        row = ots.Row(_to_sdk_cells(primary_key))
        with _sdk_errors():
            self._client.delete_row(table_name, row, _condition(expectation))
        return {}

    def batch_write_row(self, *, table_name: str, rows: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        items: list[Any] = []
        for spec in rows:
            condition = _condition(spec.get("expectation", "IGNORE"))
            primary_key = _to_sdk_cells(spec["primary_key"])
            if spec["type"] == "PUT":
                row = ots.Row(primary_key, _to_sdk_cells(spec.get("attribute_columns") or ()))
                items.append(ots.PutRowItem(row, condition))
            else:
                items.append(ots.DeleteRowItem(ots.Row(primary_key), condition))

        request = ots.BatchWriteRowRequest()
        request.add(ots.TableInBatchWriteRowItem(table_name, items))
        with _sdk_errors():
            result = self._client.batch_write_row(request)

        failed = [
            {"code": item.error_code, "message": item.error_message} for item in result.get_failed_rows()
        ]
        return {"is_all_succeed": bool(result.is_all_succeed()), "failed": failed}

    def create_table(
        self,
        *,
        table_name: str,
        primary_key: Sequence[tuple[str, str]],
        defined_columns: Sequence[tuple[str, str]] = (),
        secondary_indexes: Sequence[Mapping[str, Any]] = (),
        reserved_throughput: tuple[int, int] = (0, 0),
    ) -> dict[str, Any]:
        meta = ots.TableMeta(table_name, list(primary_key), list(defined_columns))
        throughput = ots.ReservedThroughput(ots.CapacityUnit(*reserved_throughput))
        indexes = [
            ots.SecondaryIndexMeta(
                index["name"],
                list(index["primary_key_names"]),
                list(index.get("defined_columns") or ()),
                index_type=ots.SecondaryIndexType.GLOBAL_INDEX,
            )
            for index in secondary_indexes
        ]
        with _sdk_errors():
            self._client.create_table(meta, ots.TableOptions(), throughput, indexes)
        return {}

    def delete_table(self, *, table_name: str) -> dict[str, Any]:
        with _sdk_errors():
            self._client.delete_table(table_name)
        return {}

    def describe_table(self, *, table_name: str) -> dict[str, Any]:
        with _sdk_errors():
            resp = self._client.describe_table(table_name)
        meta = resp.table_meta
        return {
            "table_name": meta.table_name,
            "primary_key": [tuple(entry) for entry in meta.schema_of_primary_key],
            "defined_columns": [tuple(entry) for entry in getattr(meta, "defined_columns", None) or ()],
            "secondary_indexes": [index.index_name for index in getattr(resp, "secondary_indexes", None) or ()],
        }

    def create_search_index(
        self,
        *,
        table_name: str,
        index_name: str,
        fields: Sequence[Mapping[str, Any]],
    ) -> dict[str, Any]:
        schemas = [_to_sdk_field_schema(spec) for spec in fields]
        with _sdk_errors():
            self._client.create_search_index(table_name, index_name, ots.SearchIndexMeta(schemas))
        return {}

    def delete_search_index(self, *, table_name: str, index_name: str) -> dict[str, Any]:
        with _sdk_errors():
            self._client.delete_search_index(table_name, index_name)
        return {}


def _condition(expectation: str) -> ots.Condition:
    return ots.Condition(getattr(ots.RowExistenceExpectation, expectation))


def _to_sdk_value(value: Any) -> Any:
    if value is INF_MIN:
        return ots.INF_MIN
    if value is INF_MAX:
        return ots.INF_MAX
    if isinstance(value, bytes):
        return bytearray(value)
    return value


def _from_sdk_value(value: Any) -> Any:
    if value is ots.INF_MIN:
        return INF_MIN
    if value is ots.INF_MAX:
        return INF_MAX
    if isinstance(value, bytearray):
        return bytes(value)
    return value


def _to_sdk_cells(cells: Sequence[Sequence[Any]]) -> list[tuple[Any, ...]]:
    return [(cell[0], _to_sdk_value(cell[1]), *cell[2:]) for cell in cells]


def _from_sdk_cells(cells: Sequence[Sequence[Any]]) -> list[tuple[str, Any]]:
    return [(cell[0], _from_sdk_value(cell[1])) for cell in cells]


def _row_record(row: Any) -> dict[str, Any]:
    if isinstance(row, (tuple, list)):
        primary_key, attributes = row[0], row[1]
    else:
        primary_key, attributes = row.primary_key, row.attribute_columns
    return {
        "primary_key": _from_sdk_cells(primary_key or ()),
        "attribute_columns": _from_sdk_cells(attributes or ()),
    }


def _to_sdk_filter(node: FilterNode | None) -> Any:
    if node is None:
        return None
    if isinstance(node, ColumnCondition):
        return ots.SingleColumnCondition(
            node.column,
            _to_sdk_value(node.value),
            getattr(ots.ComparatorType, node.comparator.value),
            pass_if_missing=node.pass_if_missing,
            latest_version_only=node.latest_version_only,
        )

    composite = ots.CompositeColumnCondition(getattr(ots.LogicalOperator, node.operator.value))
    for child in node.children:
        composite.add_sub_condition(_to_sdk_filter(child))
    return composite


def _to_sdk_query(fragment: SearchFragment) -> Any:
    params = fragment.params
    match fragment.kind:
        case "match_all":
            return ots.MatchAllQuery()
        case "term":
            return ots.TermQuery(params["field"], params["value"])
        case "terms":
            return ots.TermsQuery(params["field"], list(params["values"]))
        case "prefix":
            return ots.PrefixQuery(params["field"], params["prefix"])
        case "range":
            return ots.RangeQuery(
                params["field"],
                range_from=params["range_from"],
                range_to=params["range_to"],
                include_lower=params["include_lower"],
                include_upper=params["include_upper"],
            )
        case "wildcard":
            return ots.WildcardQuery(params["field"], params["pattern"])
        case "exists":
            return ots.ExistsQuery(params["field"])
        case "geo_distance":
            return ots.GeoDistanceQuery(params["field"], params["center"], params["distance"])
        case "geo_polygon":
            return ots.GeoPolygonQuery(params["field"], list(params["points"]))
        case "match":
            operator = params.get("operator")
            return ots.MatchQuery(
                params["field"],
                params["text"],
                minimum_should_match=params.get("minimum_should_match"),
                operator=getattr(ots.QueryOperator, operator) if operator else None,
            )
        case "match_phrase":
            return ots.MatchPhraseQuery(params["field"], params["text"])
        case "bool":
            return ots.BoolQuery(
                must_queries=[_to_sdk_query(q) for q in params["must"]],
                must_not_queries=[_to_sdk_query(q) for q in params["must_not"]],
                filter_queries=[_to_sdk_query(q) for q in params["filter"]],
                should_queries=[_to_sdk_query(q) for q in params["should"]],
                minimum_should_match=params.get("minimum_should_match"),
            )
    raise ValueError(f"unsupported search query kind: {fragment.kind}")


def _to_sdk_sort(sorters: Sequence[Sorter] | None) -> Any:
    if not sorters:
        return None

    out: list[Any] = []
    for sorter in sorters:
        order = getattr(ots.SortOrder, sorter.order)
        if isinstance(sorter, FieldSort):
            mode = getattr(ots.SortMode, sorter.mode) if sorter.mode else None
            out.append(ots.FieldSort(sorter.field, sort_order=order, sort_mode=mode))
        elif isinstance(sorter, PrimaryKeySort):
            out.append(ots.PrimaryKeySort(sort_order=order))
        elif isinstance(sorter, ScoreSort):
            out.append(ots.ScoreSort(sort_order=order))
    return ots.Sort(sorters=out)


def _to_sdk_field_schema(spec: Mapping[str, Any]) -> Any:
    analyzer = spec.get("analyzer")
    return ots.FieldSchema(
        spec["field_name"],
        _SEARCH_FIELD_TYPES[spec["field_type"]],
        index=spec.get("index", True),
        store=spec.get("store", False),
        is_array=spec.get("is_array", False),
        enable_sort_and_agg=spec.get("enable_sort_and_agg", True),
        analyzer=getattr(ots.AnalyzerType, analyzer.upper().replace("_", "")) if analyzer else None,
    )
