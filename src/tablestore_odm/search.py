from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal, cast

from .errors import ConditionBuildError, StoreError, ValidationError
from .results import Result
from .validation import validate_index_name

if TYPE_CHECKING:
    from .client import StoreClient
    from .model import Schema

logger = logging.getLogger(__name__)

DefaultSearchLimit = 10

type SortOrder = Literal["ASC", "DESC"]
type SortMode = Literal["MIN", "MAX", "AVG"]


@dataclass(frozen=True)
class SearchFragment:
    kind: str
    params: dict[str, Any] = field(default_factory=dict)
    collapse: str | None = None


@dataclass(frozen=True)
class FieldSort:
    field: str
    order: SortOrder = "ASC"
    mode: SortMode | None = None


@dataclass(frozen=True)
class PrimaryKeySort:
    order: SortOrder = "ASC"


@dataclass(frozen=True)
class ScoreSort:
    order: SortOrder = "DESC"


type Sorter = FieldSort | PrimaryKeySort | ScoreSort


@dataclass(frozen=True)
class SearchPage:
    rows: list[dict[str, Any]]
    total_count: int = 0
    next_token: bytes | None = None


class QueryFactory:
    def match_all(self) -> SearchFragment:
        return SearchFragment(kind="match_all")

    def term(self, field: str, value: Any) -> SearchFragment:
        return SearchFragment(kind="term", params={"field": _field(field), "value": _literal(field, value)})

    def terms(self, field: str, values: Sequence[Any]) -> SearchFragment:
        if isinstance(values, (str, bytes)) or not values:
            raise ConditionBuildError(f"terms on {field} requires a non-empty list of values")
        return SearchFragment(
            kind="terms",
            params={"field": _field(field), "values": [_literal(field, v) for v in values]},
        )

    def prefix(self, field: str, prefix: str) -> SearchFragment:
        return SearchFragment(kind="prefix", params={"field": _field(field), "prefix": _literal(field, prefix)})

    def range(
        self,
        field: str,
        range_from: Any = None,
        range_to: Any = None,
        *,
        include_lower: bool = True,
        include_upper: bool = True,
        gt: Any = None,
        gte: Any = None,
        lt: Any = None,
        lte: Any = None,
    ) -> SearchFragment:
        if sum(v is not None for v in (range_from, gt, gte)) > 1:
            raise ConditionBuildError(f"range on {field} has more than one lower bound")
        if sum(v is not None for v in (range_to, lt, lte)) > 1:
            raise ConditionBuildError(f"range on {field} has more than one upper bound")

        if gt is not None:
            range_from, include_lower = gt, False
        elif gte is not None:
            range_from, include_lower = gte, True
        if lt is not None:
            range_to, include_upper = lt, False
        elif lte is not None:
            range_to, include_upper = lte, True

        if range_from is None and range_to is None:
            raise ConditionBuildError(f"range on {field} requires at least one bound")

        return SearchFragment(
            kind="range",
            params={
                "field": _field(field),
                "range_from": range_from,
                "range_to": range_to,
                "include_lower": include_lower,
                "include_upper": include_upper,
            },
        )

    def wildcard(self, field: str, pattern: str) -> SearchFragment:
        return SearchFragment(kind="wildcard", params={"field": _field(field), "pattern": _literal(field, pattern)})

    def exists(self, field: str) -> SearchFragment:
        return SearchFragment(kind="exists", params={"field": _field(field)})

    def geo_distance(self, field: str, center: str | Sequence[float], distance: float) -> SearchFragment:
        if distance <= 0:
            raise ConditionBuildError(f"geo_distance on {field} requires a positive distance")
        return SearchFragment(
            kind="geo_distance",
            params={"field": _field(field), "center": _geo_point(center), "distance": float(distance)},
        )

    def geo_polygon(self, field: str, points: Sequence[str | Sequence[float]]) -> SearchFragment:
        if len(points) < 3:
            raise ConditionBuildError(f"geo_polygon on {field} requires at least 3 points")
        return SearchFragment(
            kind="geo_polygon",
            params={"field": _field(field), "points": [_geo_point(p) for p in points]},
        )

    def collapse(self, field: str, query: SearchFragment | None = None) -> SearchFragment:
        return replace(query or self.match_all(), collapse=_field(field))

    def match(
        self,
        field: str,
        text: str,
        *,
        minimum_should_match: int | None = None,
        operator: Literal["AND", "OR"] | None = None,
    ) -> SearchFragment:
        return SearchFragment(
            kind="match",
            params={
                "field": _field(field),
                "text": _literal(field, text),
                "minimum_should_match": minimum_should_match,
                "operator": operator,
            },
        )

    def match_phrase(self, field: str, text: str) -> SearchFragment:
        return SearchFragment(kind="match_phrase", params={"field": _field(field), "text": _literal(field, text)})

    def bool_(
        self,
        *,
        must: Sequence[SearchFragment] = (),
        must_not: Sequence[SearchFragment] = (),
        filter: Sequence[SearchFragment] = (),
        should: Sequence[SearchFragment] = (),
        minimum_should_match: int | None = None,
    ) -> SearchFragment:
        clauses = {
            "must": list(must),
            "must_not": list(must_not),
            "filter": list(filter),
            "should": list(should),
        }
        if not any(clauses.values()):
            raise ConditionBuildError("bool query requires at least one clause")
        for name, fragments in clauses.items():
            for fragment in fragments:
                if not isinstance(fragment, SearchFragment):
                    raise ConditionBuildError(f"bool {name} clause must hold query fragments")
        return SearchFragment(kind="bool", params={**clauses, "minimum_should_match": minimum_should_match})


def _field(name: str) -> str:
    if not isinstance(name, str) or not name:
        raise ConditionBuildError("search field name is required")
    return name


def _literal(field: str, value: Any) -> Any:
    if value is None:
        raise ConditionBuildError(f"search condition on {field} requires a value")
    return value


def _geo_point(point: str | Sequence[float]) -> str:
    if isinstance(point, str):
        return point
    if len(point) != 2:
        raise ConditionBuildError(f"geo point must be (lat, lon), got {point!r}")
    lat, lon = point
    return f"{float(lat)},{float(lon)}"


def _sort_order(order: str) -> SortOrder:
    normalized = order.upper()
    if normalized not in {"ASC", "DESC"}:
        raise ValidationError(f"sort order must be ASC or DESC (got {order!r})")
    return cast(SortOrder, normalized)


def _coerce_count(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(count, 0)


class SearchQueryBuilder:
    def __init__(self, schema: Schema, client: StoreClient, table_name: str, index_name: str) -> None:
        validate_index_name(index_name)
        if schema.search_indexes and index_name not in schema.search_indexes:
            raise ValidationError(f"unknown search index: {index_name}")

        self._schema = schema
        self._client = client
        self._table_name = table_name
        self._index_name = index_name
        self._query: SearchFragment | None = None
        self._limit = DefaultSearchLimit
        self._offset = 0
        self._token: bytes | None = None
        self._get_total_count = True
        self._columns: list[str] | None = None
        self._sorters: list[Sorter] = []

    def filter(self, build: Callable[[QueryFactory], SearchFragment]) -> SearchQueryBuilder:
        try:
            fragment = build(QueryFactory())
        except ConditionBuildError:
            raise
        except Exception as err:
            raise ConditionBuildError(f"search query construction failed: {err}") from err

        if not isinstance(fragment, SearchFragment):
            raise ConditionBuildError("search callback must return a query fragment")
        self._query = fragment
        return self

    def limit(self, limit: int) -> SearchQueryBuilder:
        self._limit = limit if limit > 0 else DefaultSearchLimit
        return self

    def offset(self, offset: int) -> SearchQueryBuilder:
        self._offset = max(offset, 0)
        return self

    def token(self, token: bytes | str | None) -> SearchQueryBuilder:
        self._token = token.encode("utf-8") if isinstance(token, str) else token
        return self

    def get_total_count(self, enabled: bool = True) -> SearchQueryBuilder:
        self._get_total_count = enabled
        return self

    def select(self, fields: Sequence[str]) -> SearchQueryBuilder:
        if not fields:
            self._columns = None
            return self
        self._columns = [
            decl.column_name for name in fields if (decl := self._schema.field_declaration(name)) is not None
        ]
        return self

    def sort_by(self, *sorters: Sorter) -> SearchQueryBuilder:
        for sorter in sorters:
            if not isinstance(sorter, (FieldSort, PrimaryKeySort, ScoreSort)):
                raise ValidationError(f"invalid sorter: {sorter!r}")
        self._sorters = list(sorters)
        return self

    def add_sort_field(self, field: str, order: str = "ASC", mode: SortMode | None = None) -> SearchQueryBuilder:
        if mode is not None and mode not in {"MIN", "MAX", "AVG"}:
            raise ValidationError(f"sort mode must be MIN, MAX or AVG (got {mode!r})")
        self._sorters.append(FieldSort(field=_field(field), order=_sort_order(order), mode=mode))
        return self

    def add_sort_by_primary_key(self, order: str = "ASC") -> SearchQueryBuilder:
        self._sorters.append(PrimaryKeySort(order=_sort_order(order)))
        return self

    def add_sort_by_score(self, order: str = "DESC") -> SearchQueryBuilder:
        self._sorters.append(ScoreSort(order=_sort_order(order)))
        return self

    def build_request(self) -> dict[str, Any]:
        if self._query is None:
            raise ValidationError("search query is required; call filter() first")
        self._check_sorters()

        if self._columns:
            columns_to_get: dict[str, Any] = {"return_type": "SPECIFIED", "column_names": list(self._columns)}
        else:
            columns_to_get = {"return_type": "ALL", "column_names": []}

        return {
            "table_name": self._table_name,
            "index_name": self._index_name,
            "query": self._query,
            "collapse": self._query.collapse,
            "sort": list(self._sorters) or None,
            "next_token": self._token,
            "limit": self._limit,
            "offset": self._offset,
            "get_total_count": self._get_total_count,
            "columns_to_get": columns_to_get,
        }

    def execute(self) -> Result[SearchPage]:
        try:
            req = self.build_request()
        except ValidationError as err:
            return Result.failure(err)
        return self._run(req)

    def find_one(self) -> Result[dict[str, Any] | None]:
        try:
            req = self.build_request()
        except ValidationError as err:
            return Result.failure(err)
        req["limit"] = 1
        req["offset"] = 0

        res = self._run(req)
        if res.error is not None:
            return Result.failure(res.error)
        page = cast(SearchPage, res.value)
        return Result.success(page.rows[0] if page.rows else None)

    def _check_sorters(self) -> None:
        index = self._schema.search_indexes.get(self._index_name)
        if index is None:
            return
        for sorter in self._sorters:
            if not isinstance(sorter, FieldSort):
                continue
            declared = index.field(sorter.field)
            if declared is not None and not declared.sortable:
                raise ValidationError(f"field {sorter.field} is not sortable in search index {self._index_name}")

    def _run(self, req: dict[str, Any]) -> Result[SearchPage]:
        logger.debug(
            "search on %s/%s (kind=%s, limit=%d)",
            req["table_name"],
            req["index_name"],
            req["query"].kind,
            req["limit"],
        )
        try:
            resp = self._client.search(**req)
        except StoreError as err:
            return Result.failure(err)

        if not resp.get("is_all_succeed", True):
            logger.warning(
                "search on %s/%s did not succeed on every partition; returning an empty result",
                req["table_name"],
                req["index_name"],
            )
            return Result.success(SearchPage(rows=[], total_count=0, next_token=None))

        rows: list[dict[str, Any]] = []
        for raw in resp.get("rows") or []:
            row = self._schema.from_wire_row(raw)
            if row is not None:
                rows.append(row)

        return Result.success(
            SearchPage(
                rows=rows,
                total_count=_coerce_count(resp.get("total_count")),
                next_token=resp.get("next_token") or None,
            )
        )
