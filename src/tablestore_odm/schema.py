from __future__ import annotations

import logging
from typing import Any

from .connection import Connection
from .converter import FieldDeclaration, FieldType
from .errors import AlreadyExistsError, NotFoundError, ValidationError
from .model import Schema, SearchField, SearchFieldMode
from .validation import validate_table_name

logger = logging.getLogger(__name__)

_PRIMARY_KEY_TYPES = {
    FieldType.STRING: "STRING",
    FieldType.INTEGER: "INTEGER",
    FieldType.BIG_INTEGER: "INTEGER",
    FieldType.TIMESTAMP: "INTEGER",
    FieldType.BINARY: "BINARY",
    FieldType.RAW: "STRING",
}

_COLUMN_TYPES = {
    FieldType.STRING: "STRING",
    FieldType.INTEGER: "INTEGER",
    FieldType.BIG_INTEGER: "INTEGER",
    FieldType.TIMESTAMP: "INTEGER",
    FieldType.FLOAT: "DOUBLE",
    FieldType.BOOLEAN: "BOOLEAN",
    FieldType.BINARY: "BINARY",
    FieldType.STRUCTURED: "STRING",
    FieldType.RAW: "STRING",
}

_SEARCH_TYPES = {
    FieldType.STRING: SearchFieldMode.KEYWORD,
    FieldType.INTEGER: SearchFieldMode.LONG,
    FieldType.BIG_INTEGER: SearchFieldMode.LONG,
    FieldType.TIMESTAMP: SearchFieldMode.LONG,
    FieldType.FLOAT: SearchFieldMode.DOUBLE,
    FieldType.BOOLEAN: SearchFieldMode.BOOLEAN,
    FieldType.STRUCTURED: SearchFieldMode.KEYWORD,
    FieldType.RAW: SearchFieldMode.KEYWORD,
}


def build_create_table_request(
    schema: Schema,
    *,
    table_name: str,
    reserved_throughput: tuple[int, int] = (0, 0),
) -> dict[str, Any]:
    validate_table_name(table_name)

    primary_key = [
        (schema.fields[name].column_name, _PRIMARY_KEY_TYPES[schema.fields[name].type]) for name in schema.primary_key
    ]

    defined: dict[str, str] = {}
    secondary_indexes: list[dict[str, Any]] = []
    for index in schema.secondary_indexes.values():
        index_columns: list[str] = []
        for name in (*index.keys, *index.columns):
            if schema.is_primary_key_field(name):
                continue
            decl = schema.fields[name]
            defined[decl.column_name] = _COLUMN_TYPES[decl.type]
            if name in index.columns:
                index_columns.append(decl.column_name)

        secondary_indexes.append(
            {
                "name": index.name,
                "primary_key_names": [schema.fields[name].column_name for name in index.keys],
                "defined_columns": index_columns,
            }
        )

    return {
        "table_name": table_name,
        "primary_key": primary_key,
        "defined_columns": sorted(defined.items()),
        "secondary_indexes": secondary_indexes,
        "reserved_throughput": reserved_throughput,
    }


def build_search_index_requests(schema: Schema, *, table_name: str) -> list[dict[str, Any]]:
    validate_table_name(table_name)

    requests: list[dict[str, Any]] = []
    for index in schema.search_indexes.values():
        requests.append(
            {
                "table_name": table_name,
                "index_name": index.name,
                "fields": [_field_schema(schema, search_field) for search_field in index.fields],
            }
        )
    return requests


def create_table(
    schema: Schema,
    *,
    table_name: str,
    client: Any | None = None,
    with_search_indexes: bool = True,
    reserved_throughput: tuple[int, int] = (0, 0),
) -> None:
    if client is None:
        client = Connection().client

    req = build_create_table_request(schema, table_name=table_name, reserved_throughput=reserved_throughput)
    client.create_table(**req)
    logger.debug("created table %s", table_name)

    if with_search_indexes:
        _create_search_indexes(client, schema, table_name)


def ensure_table(
    schema: Schema,
    *,
    table_name: str,
    client: Any | None = None,
    with_search_indexes: bool = True,
    reserved_throughput: tuple[int, int] = (0, 0),
) -> None:
    if client is None:
        client = Connection().client

    try:
        client.describe_table(table_name=table_name)
    except NotFoundError:
        try:
            create_table(
                schema,
                table_name=table_name,
                client=client,
                with_search_indexes=False,
                reserved_throughput=reserved_throughput,
            )
        except AlreadyExistsError:
            pass

    if with_search_indexes:
        _create_search_indexes(client, schema, table_name)


def delete_table(*, table_name: str, client: Any | None = None, ignore_missing: bool = False) -> None:
    if client is None:
        client = Connection().client

    validate_table_name(table_name)
    try:
        client.delete_table(table_name=table_name)
    except NotFoundError:
        if not ignore_missing:
            raise


def describe_table(*, table_name: str, client: Any | None = None) -> dict[str, Any]:
    if client is None:
        client = Connection().client

    validate_table_name(table_name)
    return dict(client.describe_table(table_name=table_name))


def _create_search_indexes(client: Any, schema: Schema, table_name: str) -> None:
    for req in build_search_index_requests(schema, table_name=table_name):
        try:
            client.create_search_index(**req)
        except AlreadyExistsError:
            logger.debug("search index %s already exists on %s", req["index_name"], table_name)


def _field_schema(schema: Schema, search_field: SearchField) -> dict[str, Any]:
    root, _, _ = search_field.name.partition(".")
    decl: FieldDeclaration = schema.fields[root]
    mode = search_field.mode or _SEARCH_TYPES.get(decl.type)
    if mode is None:
        raise ValidationError(f"field {search_field.name} ({decl.type.value}) cannot be search indexed")

    column = decl.column_name if root == search_field.name else search_field.name
    return {
        "field_name": column,
        "field_type": mode.value,
        "index": search_field.index,
        "store": search_field.stored,
        "enable_sort_and_agg": search_field.sortable and mode is not SearchFieldMode.TEXT,
        "is_array": search_field.is_array,
        "analyzer": search_field.analyzer if mode is SearchFieldMode.TEXT else None,
    }
