from __future__ import annotations

import uuid
from dataclasses import dataclass

from tablestore_odm import Connection, Schema, Table, delete_table, ensure_table, ots_field, search_index


@dataclass(frozen=True)
class Product:
    category: str = ots_field(primary_key=True)
    product_id: str = ots_field(primary_key=True)
    name: str = ""
    price: float = 0.0
    stock: int = 0


def main() -> None:
    client = Connection().client
    table_name = f"odm_example_{uuid.uuid4().hex[:12]}"
    schema = Schema.from_dataclass(Product, search_indexes=[search_index("products_idx", "name", "price")])

    ensure_table(schema, table_name=table_name, client=client)
    try:
        table = Table(schema, table_name=table_name, client=client)

        table.put(Product(category="books", product_id="b1", name="Dune", price=9.5, stock=3))
        table.put(Product(category="books", product_id="b2", name="Emma", price=7.0))
        table.put(Product(category="games", product_id="g1", name="Go", price=30.0, stock=1))

        print("get:", table.get({"category": "books", "product_id": "b2"}).unwrap())

        page = (
            table.range()
            .start_with({"category": "books"})
            .end_at({"category": "books~"})
            .filter(lambda f: f.gt("stock", 0))
            .execute()
            .unwrap()
        )
        print("books in stock:", page.rows if page else [])

        err, hits = table.search("products_idx").filter(lambda q: q.range("price", lt=10)).add_sort_field("price").execute()
        print("search price < 10:", err or (hits.rows if hits else []))
    finally:
        delete_table(table_name=table_name, client=client, ignore_missing=True)


if __name__ == "__main__":
    main()
