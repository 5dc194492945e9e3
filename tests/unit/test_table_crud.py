from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from tablestore_odm import (
    ConditionFailedError,
    ConfigurationError,
    Connection,
    FieldDeclaration,
    FieldType,
    MarshallingError,
    NameValidationError,
    NotFoundError,
    RangeQueryBuilder,
    Schema,
    SearchQueryBuilder,
    StoreError,
    Table,
    TablestoreSettings,
    ValidationError,
    ots_field,
    search_index,
    secondary_index,
)
from tablestore_odm.mocks import ANY, FakeTablestoreClient
from tablestore_odm.table import MaxBatchWriteRows
from tablestore_odm.testkit import fixed_clock, wire_row

NOW = datetime(2024, 5, 1, tzinfo=UTC)


@dataclass(frozen=True)
class User:
    user_id: str = ots_field(primary_key=True)
    email: str = ""
    age: int | None = None
    active: bool = ots_field(omitempty=False, default=True)
    created_at: int | None = None
    updated_at: int | None = None


def _table(client: FakeTablestoreClient) -> Table:
    schema = Schema.from_dataclass(
        User,
        secondary_indexes=[secondary_index("by_email", "email")],
        search_indexes=[search_index("users_idx", "email", "age")],
        timestamps=True,
        clock=fixed_clock(NOW),
    )
    return Table(schema, table_name="users", client=client)


def test_table_rejects_invalid_table_names() -> None:
    with pytest.raises(NameValidationError):
        Table(Schema.from_dataclass(User), table_name="u", client=FakeTablestoreClient())


def test_get_decodes_the_row() -> None:
    client = FakeTablestoreClient()
    client.expect(
        "get_row",
        {"table_name": "users", "primary_key": [("user_id", "u1")]},
        response={"row": wire_row([("user_id", "u1")], [("email", "a@example.com"), ("age", 30)])},
    )

    err, row = _table(client).get({"user_id": "u1"})

    assert err is None
    assert row == {"user_id": "u1", "email": "a@example.com", "age": 30}
    client.assert_no_pending()


def test_get_missing_row_is_none() -> None:
    client = FakeTablestoreClient()
    client.expect("get_row", response={"row": None})

    assert _table(client).get({"user_id": "u1"}).unwrap() is None


def test_get_model_builds_the_dataclass() -> None:
    client = FakeTablestoreClient()
    client.expect(
        "get_row",
        response={"row": wire_row([("user_id", "u1")], [("email", "a@example.com"), ("age", 30), ("active", True)])},
    )
    client.expect("get_row", response={"row": None})

    table = _table(client)

    assert table.get_model({"user_id": "u1"}).unwrap() == User(user_id="u1", email="a@example.com", age=30)
    assert table.get_model({"user_id": "u2"}).unwrap() is None
    client.assert_no_pending()


def test_put_reports_unencodable_structured_values() -> None:
    client = FakeTablestoreClient()
    schema = Schema(
        [FieldDeclaration("user_id", FieldType.STRING), FieldDeclaration("meta", FieldType.STRUCTURED)],
        ["user_id"],
    )
    table = Table(schema, table_name="users", client=client)

    err, _ = table.put({"user_id": "u1", "meta": {"price": Decimal("1.5")}})
    update_err, _ = table.update({"user_id": "u1"}, {"meta": {"price": Decimal("1.5")}})

    assert isinstance(err, MarshallingError)
    assert err.fields == ("meta",)
    assert isinstance(update_err, MarshallingError)
    assert update_err.fields == ("meta",)
    assert client.calls == []



def test_get_projects_columns() -> None:
    client = FakeTablestoreClient()
    client.expect("get_row", {"columns_to_get": ["email"]}, response={"row": None})

    _table(client).get({"user_id": "u1"}, columns=["email", "ghost"])
    client.assert_no_pending()


def test_get_requires_the_full_key() -> None:
    client = FakeTablestoreClient()

    err, row = _table(client).get({})

    assert isinstance(err, MarshallingError)
    assert err.fields == ("user_id",)
    assert row is None
    assert client.calls == []


def test_put_writes_key_attributes_and_timestamps() -> None:
    client = FakeTablestoreClient()
    client.expect(
        "put_row",
        {
            "table_name": "users",
            "primary_key": [("user_id", "u1")],
            "attribute_columns": [
                ("email", "a@example.com"),
                ("active", False),
                ("created_at", 1714521600000),
                ("updated_at", 1714521600000),
            ],
            "expectation": "IGNORE",
        },
    )

    err, key = _table(client).put(User(user_id="u1", email="a@example.com", active=False))

    assert err is None
    assert key == {"user_id": "u1"}
    client.assert_no_pending()


def test_put_accepts_mappings_and_rejects_other_items() -> None:
    client = FakeTablestoreClient()
    client.expect("put_row", {"primary_key": [("user_id", "u2")], "attribute_columns": ANY})

    assert _table(client).put({"user_id": "u2", "age": 4}).ok
    with pytest.raises(ValidationError, match="dataclass instance or a mapping"):
        _table(client).put(["u3"])


def test_put_reports_invalid_attributes_without_calling_the_store() -> None:
    client = FakeTablestoreClient()

    err, _ = _table(client).put({"user_id": "u1", "age": "old"})

    assert isinstance(err, MarshallingError)
    assert err.fields == ("age",)
    assert client.calls == []


def test_create_expects_the_row_to_be_absent() -> None:
    client = FakeTablestoreClient()
    client.expect(
        "put_row",
        {"expectation": "EXPECT_NOT_EXIST"},
        error=ConditionFailedError(code="OTSConditionCheckFail", message="row exists"),
    )

    err, key = _table(client).create(User(user_id="u1"))

    assert isinstance(err, ConditionFailedError)
    assert key is None


def test_update_sends_put_and_delete_columns() -> None:
    client = FakeTablestoreClient()
    client.expect(
        "update_row",
        {
            "table_name": "users",
            "primary_key": [("user_id", "u1")],
            "update_of_attribute_columns": {
                "PUT": [("email", "b@example.com"), ("updated_at", 1714521600000)],
                "DELETE_ALL": ["age"],
            },
            "expectation": "EXPECT_EXIST",
        },
    )

    err, key = _table(client).update({"user_id": "u1"}, {"email": "b@example.com", "age": None})

    assert err is None
    assert key == {"user_id": "u1"}
    client.assert_no_pending()


def test_update_without_changes_is_rejected() -> None:
    client = FakeTablestoreClient()
    schema = Schema.from_dataclass(User)
    table = Table(schema, table_name="users", client=client)

    err, _ = table.update({"user_id": "u1"}, {})

    assert isinstance(err, ValidationError)
    assert client.calls == []


def test_update_of_missing_row_returns_condition_failure() -> None:
    client = FakeTablestoreClient()
    client.expect("update_row", error=ConditionFailedError(code="OTSConditionCheckFail", message="missing"))

    err, _ = _table(client).update({"user_id": "u1"}, {"age": 3})
    assert isinstance(err, ConditionFailedError)


def test_delete_expects_the_row_to_exist() -> None:
    client = FakeTablestoreClient()
    client.expect("delete_row", {"table_name": "users", "primary_key": [("user_id", "u1")], "expectation": "EXPECT_EXIST"})

    assert _table(client).delete({"user_id": "u1"}).unwrap() == {"user_id": "u1"}
    client.assert_no_pending()


def test_insert_many_chunks_batches() -> None:
    client = FakeTablestoreClient()
    sizes: list[int] = []

    def record_size(req: dict) -> None:
        sizes.append(len(req["rows"]))
        assert req["table_name"] == "users"
        assert {row["type"] for row in req["rows"]} == {"PUT"}

    client.expect("batch_write_row", record_size, response={"is_all_succeed": True})
    client.expect("batch_write_row", record_size, response={"is_all_succeed": True})

    users = [User(user_id=f"u{i}") for i in range(MaxBatchWriteRows + 5)]
    keys = _table(client).insert_many(users).unwrap()

    assert sizes == [MaxBatchWriteRows, 5]
    assert keys is not None
    assert keys[0] == {"user_id": "u0"}
    assert len(keys) == MaxBatchWriteRows + 5
    client.assert_no_pending()


def test_insert_many_reports_the_failing_item() -> None:
    client = FakeTablestoreClient()

    err, _ = _table(client).insert_many([User(user_id="u1"), {"age": 3}])

    assert isinstance(err, MarshallingError)
    assert str(err).startswith("item 1:")
    assert client.calls == []


def test_batch_partial_failure_is_an_error(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="tablestore_odm.table")
    client = FakeTablestoreClient()
    client.expect(
        "batch_write_row",
        response={
            "is_all_succeed": False,
            "failed": [{"code": "OTSConditionCheckFail", "message": "x"}, {"code": None, "message": "y"}],
        },
    )

    err, _ = _table(client).delete_many([{"user_id": "u1"}, {"user_id": "u2"}, {"user_id": "u3"}])

    assert isinstance(err, StoreError)
    assert err.code == "BatchWritePartialFailure"
    assert "2 of 3 rows failed (OTSConditionCheckFail, Unknown)" in err.message
    assert "2 of 3 rows failed" in caplog.text


def test_delete_many_sends_delete_rows() -> None:
    client = FakeTablestoreClient()
    client.expect(
        "batch_write_row",
        {"rows": [{"type": "DELETE", "expectation": "IGNORE", "primary_key": [("user_id", "u1")]}]},
        response={"is_all_succeed": True},
    )

    assert _table(client).delete_many([{"user_id": "u1"}]).unwrap() == [{"user_id": "u1"}]

    err, _ = _table(client).delete_many([{}])
    assert isinstance(err, MarshallingError)


def test_store_errors_are_returned_not_raised() -> None:
    client = FakeTablestoreClient()
    client.expect("delete_row", error=NotFoundError(code="OTSObjectNotExist", message="no table"))

    err, value = _table(client).delete({"user_id": "u1"})
    assert isinstance(err, NotFoundError)
    assert value is None


def test_query_builders_share_the_table() -> None:
    client = FakeTablestoreClient()
    table = _table(client)

    assert isinstance(table.range(), RangeQueryBuilder)
    assert table.find_by_index("by_email").build_request()["table_name"] == "by_email"
    search = table.search("users_idx")
    assert isinstance(search, SearchQueryBuilder)
    assert search.filter(lambda q: q.match_all()).build_request()["table_name"] == "users"


def test_client_resolves_lazily_from_the_connection() -> None:
    fake = FakeTablestoreClient()
    settings = TablestoreSettings(
        endpoint="https://inst.cn-hangzhou.ots.aliyuncs.com",
        access_key_id="id",
        secret_access_key="secret",
        instance_name="inst",
    )
    connection = Connection(settings, client_factory=lambda s: fake)
    table = Table(Schema.from_dataclass(User), table_name="users", connection=connection)

    assert table.client is fake


def test_client_without_configuration_raises() -> None:
    connection = Connection(TablestoreSettings(endpoint=None, access_key_id=None, secret_access_key=None, instance_name=None))
    table = Table(Schema.from_dataclass(User), table_name="users", connection=connection)

    with pytest.raises(ConfigurationError, match="TABLE_STORE_ENDPOINT"):
        _ = table.client
