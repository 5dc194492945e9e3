from __future__ import annotations

import types
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Union, cast, get_args, get_origin, get_type_hints, overload

from .converter import Bound, FieldDeclaration, FieldType, from_wire, to_wire
from .errors import MarshallingError, NameValidationError, SchemaDefinitionError, ValidationError
from .validation import validate_column_name, validate_index_name

CREATED_AT_FIELD = "created_at"
UPDATED_AT_FIELD = "updated_at"

_KEY_TYPES = frozenset(
    {
        FieldType.STRING,
        FieldType.INTEGER,
        FieldType.BIG_INTEGER,
        FieldType.TIMESTAMP,
        FieldType.BINARY,
        FieldType.RAW,
    }
)

type WireCell = tuple[str, Any]


class SearchFieldMode(Enum):
    KEYWORD = "KEYWORD"
    TEXT = "TEXT"
    LONG = "LONG"
    DOUBLE = "DOUBLE"
    BOOLEAN = "BOOLEAN"
    GEO_POINT = "GEO_POINT"
    NESTED = "NESTED"


@dataclass(frozen=True)
class SecondaryIndex:
    name: str
    keys: tuple[str, ...]
    columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class SearchField:
    name: str
    mode: SearchFieldMode | None = None
    sortable: bool = True
    stored: bool = False
    index: bool = True
    analyzer: str | None = None
    is_array: bool = False


@dataclass(frozen=True)
class SearchIndex:
    name: str
    fields: tuple[SearchField, ...]

    def field(self, name: str) -> SearchField | None:
        for search_field in self.fields:
            if search_field.name == name:
                return search_field
        return None


def secondary_index(name: str, *keys: str, columns: Sequence[str] = ()) -> SecondaryIndex:
    return SecondaryIndex(name=name, keys=tuple(keys), columns=tuple(columns))


def search_index(name: str, *search_fields: SearchField | str) -> SearchIndex:
    resolved = tuple(f if isinstance(f, SearchField) else SearchField(name=f) for f in search_fields)
    return SearchIndex(name=name, fields=resolved)


def search_field(
    name: str,
    mode: SearchFieldMode | None = None,
    *,
    sortable: bool = True,
    stored: bool = False,
    index: bool = True,
    analyzer: str | None = None,
    is_array: bool = False,
) -> SearchField:
    return SearchField(
        name=name,
        mode=mode,
        sortable=sortable,
        stored=stored,
        index=index,
        analyzer=analyzer,
        is_array=is_array,
    )


@overload
def ots_field(
    *,
    column: str | None = None,
    type: FieldType | None = None,
    primary_key: bool = False,
    omitempty: bool = True,
    nested: Any = None,
    ignore: bool = False,
) -> Any: ...


@overload
def ots_field(
    *,
    column: str | None = None,
    type: FieldType | None = None,
    primary_key: bool = False,
    omitempty: bool = True,
    nested: Any = None,
    ignore: bool = False,
    default: Any,
) -> Any: ...


@overload
def ots_field(
    *,
    column: str | None = None,
    type: FieldType | None = None,
    primary_key: bool = False,
    omitempty: bool = True,
    nested: Any = None,
    ignore: bool = False,
    default_factory: Any,
) -> Any: ...


def ots_field(
    *,
    column: str | None = None,
    type: FieldType | None = None,
    primary_key: bool = False,
    omitempty: bool = True,
    nested: Any = None,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("ots_field: cannot set both default and default_factory")

    opts: dict[str, Any] = {
        "primary_key": primary_key,
        "omitempty": omitempty,
        "ignore": ignore,
    }
    if column is not None:
        opts["column"] = column
    if type is not None:
        opts["type"] = type
    if nested is not None:
        opts["nested"] = nested

    return field(default=default, default_factory=default_factory, metadata={"tablestore": opts})


@dataclass(frozen=True)
class WireKey:
    entries: tuple[tuple[str, Any], ...]
    missing: tuple[str, ...]

    @property
    def key(self) -> list[WireCell]:
        return [(column, value) for column, value in self.entries if value is not None]

    @property
    def error(self) -> MarshallingError | None:
        if not self.missing:
            return None
        return MarshallingError("missing primary key fields", fields=self.missing)

    def fill(self, sentinel: Bound) -> list[WireCell]:
        return [(column, sentinel if value is None else value) for column, value in self.entries]


@dataclass(frozen=True)
class UpdatePatch:
    put: tuple[WireCell, ...] = ()
    delete_all: tuple[str, ...] = ()
    error: MarshallingError | None = None

    @property
    def is_empty(self) -> bool:
        return not self.put and not self.delete_all

    def as_update_columns(self) -> dict[str, list[Any]]:
        columns: dict[str, list[Any]] = {}
        if self.put:
            columns["PUT"] = list(self.put)
        if self.delete_all:
            columns["DELETE_ALL"] = list(self.delete_all)
        return columns


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if value is False:
        return True
    if isinstance(value, (int, float)) and value == 0:
        return True
    if isinstance(value, (str, bytes, bytearray)) and len(value) == 0:
        return True
    if isinstance(value, (list, dict, set, tuple)) and len(value) == 0:
        return True
    return False


class Schema:
    def __init__(
        self,
        fields: Sequence[FieldDeclaration],
        primary_key: Sequence[str],
        *,
        secondary_indexes: Sequence[SecondaryIndex] = (),
        search_indexes: Sequence[SearchIndex] = (),
        timestamps: bool = False,
        clock: Callable[[], datetime] | None = None,
        model_type: type | None = None,
    ) -> None:
        self.fields: dict[str, FieldDeclaration] = {}
        self.primary_key: tuple[str, ...] = tuple(primary_key)
        self.secondary_indexes: dict[str, SecondaryIndex] = {}
        self.search_indexes: dict[str, SearchIndex] = {}
        self.timestamps = timestamps
        self.model_type = model_type
        self._clock = clock or _utcnow
        self._by_column: dict[str, FieldDeclaration] = {}

        problems: list[str] = []
        self._register_fields(fields, problems)
        self._check_primary_key(problems)
        self._register_secondary_indexes(secondary_indexes, problems)
        self._register_search_indexes(search_indexes, problems)
        if problems:
            raise SchemaDefinitionError("invalid schema: " + "; ".join(problems))

        self.attribute_fields: tuple[str, ...] = tuple(
            name for name in self.fields if name not in self.primary_key
        )

    @classmethod
    def from_dataclass(
        cls,
        model_type: type,
        *,
        primary_key: Sequence[str] | None = None,
        secondary_indexes: Sequence[SecondaryIndex] = (),
        search_indexes: Sequence[SearchIndex] = (),
        timestamps: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> Schema:
        if not is_dataclass(model_type):
            raise SchemaDefinitionError("model_type must be a dataclass")

        try:
            hints = get_type_hints(model_type)
        except (NameError, TypeError) as err:
            raise SchemaDefinitionError(f"cannot resolve annotations of {model_type.__name__}: {err}") from err

        declarations: list[FieldDeclaration] = []
        flagged_keys: list[str] = []
        for dc_field in fields(model_type):
            opts = cast(dict[str, Any], dc_field.metadata.get("tablestore", {}))
            if opts.get("ignore", False):
                continue

            annotation, optional = _unwrap_optional(hints.get(dc_field.name, Any))
            field_type = cast(FieldType | None, opts.get("type")) or _infer_field_type(annotation)
            nested = opts.get("nested")
            if nested is None and field_type is FieldType.STRUCTURED:
                container = get_origin(annotation) or annotation
                if is_dataclass(annotation):
                    nested = annotation
                elif container in (tuple, set, frozenset):
                    nested = container

            declarations.append(
                FieldDeclaration(
                    name=dc_field.name,
                    type=field_type,
                    column=opts.get("column"),
                    optional=optional or dc_field.default is None,
                    omitempty=bool(opts.get("omitempty", True)),
                    nested=cast(type | None, nested),
                )
            )
            if opts.get("primary_key", False):
                flagged_keys.append(dc_field.name)

        return cls(
            declarations,
            primary_key if primary_key is not None else flagged_keys,
            secondary_indexes=secondary_indexes,
            search_indexes=search_indexes,
            timestamps=timestamps,
            clock=clock,
            model_type=model_type,
        )

    def _register_fields(self, declarations: Iterable[FieldDeclaration], problems: list[str]) -> None:
        for decl in declarations:
            if decl.name in self.fields:
                problems.append(f"duplicate field: {decl.name}")
                continue
            if decl.column_name in self._by_column:
                problems.append(f"duplicate column: {decl.column_name}")
                continue
            try:
                validate_column_name(decl.column_name)
            except NameValidationError as err:
                problems.append(str(err))
                continue
            self.fields[decl.name] = decl
            self._by_column[decl.column_name] = decl
        if not self.fields:
            problems.append("schema declares no fields")

    def _check_primary_key(self, problems: list[str]) -> None:
        if not self.primary_key:
            problems.append("primary key is required")
            return
        if len(set(self.primary_key)) != len(self.primary_key):
            problems.append("primary key repeats a field")
        for name in self.primary_key:
            decl = self.fields.get(name)
            if decl is None:
                problems.append(f"primary key field is not declared: {name}")
            elif decl.type not in _KEY_TYPES:
                problems.append(f"primary key field {name} cannot be {decl.type.value}")

    def _register_secondary_indexes(self, indexes: Iterable[SecondaryIndex], problems: list[str]) -> None:
        for index in indexes:
            if not self._check_index_name(index.name, problems):
                continue
            if not index.keys:
                problems.append(f"index {index.name}: at least one key field is required")
            for name in (*index.keys, *index.columns):
                if name not in self.fields:
                    problems.append(f"index {index.name}: field is not declared: {name}")
            self.secondary_indexes[index.name] = index

    def _register_search_indexes(self, indexes: Iterable[SearchIndex], problems: list[str]) -> None:
        for index in indexes:
            if not self._check_index_name(index.name, problems):
                continue
            if not index.fields:
                problems.append(f"search index {index.name}: at least one field is required")
            for search_field in index.fields:
                root = search_field.name.split(".", 1)[0]
                if root not in self.fields:
                    problems.append(f"search index {index.name}: field is not declared: {search_field.name}")
            self.search_indexes[index.name] = index

    def _check_index_name(self, name: str, problems: list[str]) -> bool:
        if name in self.secondary_indexes or name in self.search_indexes:
            problems.append(f"duplicate index name: {name}")
            return False
        try:
            validate_index_name(name)
        except NameValidationError as err:
            problems.append(str(err))
            return False
        return True

    def field_declaration(self, name: str) -> FieldDeclaration | None:
        return self.fields.get(name)

    def column_declaration(self, column: str) -> FieldDeclaration | None:
        return self._by_column.get(column)

    def is_primary_key_field(self, name: str) -> bool:
        return name in self.primary_key

    def primary_key_fields_for(self, index_name: str | None = None) -> list[str]:
        if index_name is None:
            return list(self.primary_key)

        index = self.secondary_indexes.get(index_name)
        if index is None:
            raise ValidationError(f"unknown secondary index: {index_name}")

        ordered = list(dict.fromkeys(index.keys))
        ordered.extend(name for name in self.primary_key if name not in ordered)
        return ordered

    def to_wire_key(self, values: Mapping[str, Any], index_name: str | None = None) -> WireKey:
        entries: list[tuple[str, Any]] = []
        missing: list[str] = []
        for name in self.primary_key_fields_for(index_name):
            decl = self.fields[name]
            wire = to_wire(values.get(name), decl)
            if wire is None:
                missing.append(name)
            entries.append((decl.column_name, wire))
        return WireKey(entries=tuple(entries), missing=tuple(missing))

    def to_wire_attributes(self, values: Mapping[str, Any]) -> tuple[list[WireCell], MarshallingError | None]:
        attributes: list[WireCell] = []
        invalid: list[str] = []
        for name in self.attribute_fields:
            decl = self.fields[name]
            value = values.get(name)
            if value is None or (decl.omitempty and _is_empty(value)):
                continue
            if not decl.accepts(value):
                invalid.append(name)
                continue
            wire = to_wire(value, decl)
            if wire is None:
                invalid.append(name)
                continue
            attributes.append((decl.column_name, wire))

        if invalid:
            return attributes, MarshallingError("invalid attribute values", fields=invalid)
        return attributes, None

    def to_wire_update_patch(self, changes: Mapping[str, Any]) -> UpdatePatch:
        put: list[WireCell] = []
        delete_all: list[str] = []
        invalid: list[str] = []
        for name in self.attribute_fields:
            decl = self.fields[name]
            if self.timestamps and name == UPDATED_AT_FIELD:
                put.append((decl.column_name, to_wire(self._now_for(decl), decl)))
                continue
            if name not in changes:
                continue

            value = changes[name]
            if value is None:
                delete_all.append(decl.column_name)
                continue
            if not decl.accepts(value):
                invalid.append(name)
                continue
            wire = to_wire(value, decl)
            if wire is None:
                invalid.append(name)
                continue
            put.append((decl.column_name, wire))

        error = MarshallingError("invalid update values", fields=invalid) if invalid else None
        return UpdatePatch(put=tuple(put), delete_all=tuple(delete_all), error=error)

    def from_wire_row(self, row: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if row is None:
            return None

        out: dict[str, Any] = {}
        cells = [*(row.get("primary_key") or ()), *(row.get("attribute_columns") or ())]
        for cell in cells:
            column, wire = cell[0], cell[1]
            decl = self.column_declaration(column)
            value = from_wire(wire, decl)
            if value is None:
                continue
            out[decl.name if decl is not None else column] = value
        return out

    def with_timestamps(self, values: Mapping[str, Any]) -> dict[str, Any]:
        stamped = dict(values)
        if not self.timestamps:
            return stamped
        for name in (CREATED_AT_FIELD, UPDATED_AT_FIELD):
            decl = self.fields.get(name)
            if decl is not None and stamped.get(name) is None:
                stamped[name] = self._now_for(decl)
        return stamped

    def to_model(self, record: Mapping[str, Any]) -> Any:
        if self.model_type is None:
            return dict(record)
        names = {f.name for f in fields(self.model_type)}
        try:
            return self.model_type(**{k: v for k, v in record.items() if k in names})
        except TypeError as err:
            raise ValidationError(str(err)) from err

    def _now_for(self, decl: FieldDeclaration) -> Any:
        now = self._clock()
        match decl.type:
            case FieldType.INTEGER | FieldType.BIG_INTEGER:
                return to_wire(now, FieldDeclaration(name=decl.name, type=FieldType.TIMESTAMP))
            case FieldType.FLOAT:
                return float(to_wire(now, FieldDeclaration(name=decl.name, type=FieldType.TIMESTAMP)))
            case FieldType.STRING:
                return now.isoformat()
        return now


def record_of(item: Any) -> dict[str, Any]:
    if is_dataclass(item) and not isinstance(item, type):
        return {f.name: getattr(item, f.name) for f in fields(item)}
    if isinstance(item, Mapping):
        return dict(item)
    raise ValidationError(f"item must be a dataclass instance or a mapping, got {type(item).__name__}")


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    origin = get_origin(annotation)
    if origin not in (Union, types.UnionType):
        return annotation, False

    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    optional = len(args) != len(get_args(annotation))
    if len(args) == 1:
        return args[0], optional
    return annotation, optional


def _infer_field_type(annotation: Any) -> FieldType:
    base = get_origin(annotation) or annotation
    if base is bool:
        return FieldType.BOOLEAN
    if base is int:
        return FieldType.INTEGER
    if base is float:
        return FieldType.FLOAT
    if base is str:
        return FieldType.STRING
    if base in (datetime, date):
        return FieldType.TIMESTAMP
    if base in (bytes, bytearray):
        return FieldType.BINARY
    if base in (list, dict, tuple, set, frozenset):
        return FieldType.STRUCTURED
    if isinstance(base, type) and issubclass(base, (list, dict, tuple)):
        return FieldType.STRUCTURED
    if is_dataclass(base):
        return FieldType.STRUCTURED
    return FieldType.RAW
