from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass

import pytest

from tablestore_odm import Connection, Schema, Table, delete_table, ensure_table, ots_field

pytestmark = pytest.mark.skipif(
    not os.environ.get("TABLE_STORE_ENDPOINT"),
    reason="TABLE_STORE_ENDPOINT is not set",
)


@dataclass(frozen=True)
class Note:
    topic: str = ots_field(primary_key=True)
    seq: int = ots_field(primary_key=True)
    body: str = ""


def test_tablestore_smoke_put_range_delete() -> None:
    table_name = f"odm_smoke_{uuid.uuid4().hex[:12]}"
    client = Connection().client
    schema = Schema.from_dataclass(Note)

    ensure_table(schema, table_name=table_name, client=client)
    # new tables take a moment before accepting writes
    time.sleep(float(os.environ.get("TABLE_STORE_TABLE_READY_SECONDS", "5")))
    try:
        table = Table(schema, table_name=table_name, client=client)
        for seq in (1, 2, 3):
            table.put(Note(topic="a", seq=seq, body=f"note {seq}")).unwrap()

        assert table.get({"topic": "a", "seq": 2}).unwrap() == {"topic": "a", "seq": 2, "body": "note 2"}

        page = table.range().start_with({"topic": "a"}).end_at({"topic": "a", "seq": 3}).execute().unwrap()
        assert page is not None
        assert [row["seq"] for row in page.rows] == [1, 2]

        newest = table.range().direction("BACKWARD").find_one().unwrap()
        assert newest is not None
        assert newest["seq"] == 3

        table.delete({"topic": "a", "seq": 1}).unwrap()
        assert table.get({"topic": "a", "seq": 1}).unwrap() is None
    finally:
        delete_table(table_name=table_name, client=client, ignore_missing=True)
