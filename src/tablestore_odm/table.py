from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from .connection import Connection
from .errors import MarshallingError, StoreError, ValidationError
from .model import Schema, record_of
from .query import RangeQueryBuilder
from .results import Result
from .search import SearchQueryBuilder
from .validation import validate_table_name

logger = logging.getLogger(__name__)

MaxBatchWriteRows = 200


def _chunked[T](items: Sequence[T], size: int) -> Sequence[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


class Table:
    def __init__(
        self,
        schema: Schema,
        *,
        table_name: str,
        client: Any | None = None,
        connection: Connection | None = None,
    ) -> None:
        validate_table_name(table_name)
        self._schema = schema
        self._table_name = table_name
        self._client: Any | None = client
        self._connection = connection

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = (self._connection or Connection()).client
        return self._client

    def get(self, key: Mapping[str, Any], *, columns: Sequence[str] | None = None) -> Result[dict[str, Any] | None]:
        wire_key = self._schema.to_wire_key(key)
        if wire_key.error is not None:
            return Result.failure(wire_key.error)

        req: dict[str, Any] = {"table_name": self._table_name, "primary_key": wire_key.key}
        if columns is not None:
            req["columns_to_get"] = [
                decl.column_name for name in columns if (decl := self._schema.field_declaration(name)) is not None
            ]

        try:
            resp = self.client.get_row(**req)
        except StoreError as err:
            return Result.failure(err)
        return Result.success(self._schema.from_wire_row(resp.get("row")))

    def get_model(self, key: Mapping[str, Any]) -> Result[Any]:
        err, row = self.get(key)
        if err is not None:
            return Result.failure(err)
        if row is None:
            return Result.success(None)
        try:
            return Result.success(self._schema.to_model(row))
        except ValidationError as verr:
            return Result.failure(verr)

    def put(self, item: Any, *, expectation: str = "IGNORE") -> Result[dict[str, Any]]:
        record = self._schema.with_timestamps(record_of(item))
        row = self._to_put_row(record)
        if isinstance(row, MarshallingError):
            return Result.failure(row)

        try:
            self.client.put_row(table_name=self._table_name, expectation=expectation, **row)
        except StoreError as err:
            return Result.failure(err)
        return Result.success(self._key_values(record))

    def create(self, item: Any) -> Result[dict[str, Any]]:
        return self.put(item, expectation="EXPECT_NOT_EXIST")

    def update(self, key: Mapping[str, Any], changes: Mapping[str, Any]) -> Result[dict[str, Any]]:
        wire_key = self._schema.to_wire_key(key)
        if wire_key.error is not None:
            return Result.failure(wire_key.error)

        patch = self._schema.to_wire_update_patch(changes)
        if patch.error is not None:
            return Result.failure(patch.error)
        if patch.is_empty:
            return Result.failure(ValidationError("update has no changes"))

        try:
            self.client.update_row(
                table_name=self._table_name,
                primary_key=wire_key.key,
                update_of_attribute_columns=patch.as_update_columns(),
                expectation="EXPECT_EXIST",
            )
        except StoreError as err:
            return Result.failure(err)
        return Result.success(self._key_values(key))

    def delete(self, key: Mapping[str, Any]) -> Result[dict[str, Any]]:
        wire_key = self._schema.to_wire_key(key)
        if wire_key.error is not None:
            return Result.failure(wire_key.error)

        try:
            self.client.delete_row(table_name=self._table_name, primary_key=wire_key.key, expectation="EXPECT_EXIST")
        except StoreError as err:
            return Result.failure(err)
        return Result.success(self._key_values(key))

    def insert_many(self, items: Sequence[Any]) -> Result[list[dict[str, Any]]]:
        records = [self._schema.with_timestamps(record_of(item)) for item in items]
        rows: list[dict[str, Any]] = []
        for i, record in enumerate(records):
            row = self._to_put_row(record)
            if isinstance(row, MarshallingError):
                return Result.failure(MarshallingError(f"item {i}: {row}", fields=row.fields))
            rows.append({"type": "PUT", "expectation": "IGNORE", **row})

        err = self._batch_write(rows)
        if err is not None:
            return Result.failure(err)
        return Result.success([self._key_values(record) for record in records])

    def delete_many(self, keys: Sequence[Mapping[str, Any]]) -> Result[list[dict[str, Any]]]:
        rows: list[dict[str, Any]] = []
        for i, key in enumerate(keys):
            wire_key = self._schema.to_wire_key(key)
            if wire_key.error is not None:
                return Result.failure(MarshallingError(f"key {i}: missing primary key fields", fields=wire_key.missing))
            rows.append({"type": "DELETE", "expectation": "IGNORE", "primary_key": wire_key.key})

        err = self._batch_write(rows)
        if err is not None:
            return Result.failure(err)
        return Result.success([self._key_values(key) for key in keys])

    def range(self) -> RangeQueryBuilder:
        return RangeQueryBuilder(self._schema, self.client, self._table_name)

    def find_by_index(self, index_name: str) -> RangeQueryBuilder:
        return RangeQueryBuilder(self._schema, self.client, self._table_name, index_name)

    def search(self, index_name: str) -> SearchQueryBuilder:
        return SearchQueryBuilder(self._schema, self.client, self._table_name, index_name)

    def _to_put_row(self, record: Mapping[str, Any]) -> dict[str, Any] | MarshallingError:
        wire_key = self._schema.to_wire_key(record)
        if wire_key.error is not None:
            return wire_key.error

        attributes, err = self._schema.to_wire_attributes(record)
        if err is not None:
            return err
        return {"primary_key": wire_key.key, "attribute_columns": attributes}

    def _batch_write(self, rows: Sequence[dict[str, Any]]) -> StoreError | None:
        for chunk in _chunked(rows, MaxBatchWriteRows):
            try:
                resp = self.client.batch_write_row(table_name=self._table_name, rows=list(chunk))
            except StoreError as err:
                return err

            if not resp.get("is_all_succeed", True):
                failed = list(resp.get("failed") or [])
                codes = sorted({str(f.get("code") or "Unknown") for f in failed})
                logger.warning("batch write on %s: %d of %d rows failed", self._table_name, len(failed), len(chunk))
                return StoreError(
                    code="BatchWritePartialFailure",
                    message=f"{len(failed)} of {len(chunk)} rows failed ({', '.join(codes)})",
                )
        return None

    def _key_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {name: values[name] for name in self._schema.primary_key if name in values}
