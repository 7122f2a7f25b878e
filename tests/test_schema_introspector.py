import pytest

from app.ai_feature.schema_introspector import (
    SchemaIntrospector,
    format_snippet,
    parse_schema_text,
)
from app.core.database import DatastoreError
from conftest import FakeDatastore

SCHEMA_TEXT = """
-- Supabase export
create table members (
  id uuid primary key default gen_random_uuid(),
  name text not null,
  email text unique,
  -- legacy column
  joined_at timestamp with time zone default now(),
  constraint members_email_check check (email <> '')
);

CREATE TABLE IF NOT EXISTS public.orders (
  id uuid not null,
  "member_id" uuid references members(id),
  order_date timestamp,
  total numeric(12, 2),
  PRIMARY KEY (id),
  FOREIGN KEY (member_id) REFERENCES members(id)
);
"""


def test_parse_schema_text():
    tables = parse_schema_text(SCHEMA_TEXT)
    assert tables == {
        "members": ["id", "name", "email", "joined_at"],
        "orders": ["id", "member_id", "order_date", "total"],
    }


@pytest.mark.asyncio
async def test_local_schema_file_wins(tmp_path):
    schema_file = tmp_path / "schema_supabase.txt"
    schema_file.write_text(SCHEMA_TEXT, encoding="utf-8")
    datastore = FakeDatastore(default=[{"column_name": "should_not_be_used"}])
    introspector = SchemaIntrospector(
        datastore, [str(tmp_path / "missing.txt"), str(schema_file)]
    )

    snippet = await introspector.build_snippet(["members"])

    assert snippet == {"members": ["id", "name", "email", "joined_at"]}
    assert datastore.executed == []


@pytest.mark.asyncio
async def test_table_missing_from_local_file_falls_back_to_remote(tmp_path):
    schema_file = tmp_path / "schema_supabase.txt"
    schema_file.write_text(SCHEMA_TEXT, encoding="utf-8")
    datastore = FakeDatastore(default=[{"column_name": "id"}, {"column_name": "name"}])
    introspector = SchemaIntrospector(datastore, [str(schema_file)])

    snippet = await introspector.build_snippet(["members", "products"])

    assert snippet["products"] == ["id", "name"]
    assert len(datastore.executed) == 1
    assert "table_name = 'products'" in datastore.executed[0]
    assert "order by ordinal_position" in datastore.executed[0]


@pytest.mark.parametrize(
    "payload",
    [
        [{"column_name": "id"}, {"column_name": "price"}],
        {"json_agg": [{"column_name": "id"}, {"column_name": "price"}]},
        [{"json_agg": [{"column_name": "id"}, {"column_name": "price"}]}],
        ["id", "price"],
        '[{"column_name": "id"}, {"column_name": "price"}]',
        {"result": [{"column_name": "id"}, {"column_name": "price"}]},
        '{"json_agg": [{"column_name": "id"}, {"column_name": "price"}]}',
    ],
)
@pytest.mark.asyncio
async def test_remote_shapes_are_flattened(payload):
    introspector = SchemaIntrospector(FakeDatastore(default=payload))
    assert await introspector.fetch_table_columns("products") == ["id", "price"]


@pytest.mark.asyncio
async def test_remote_failure_degrades_to_empty_list():
    introspector = SchemaIntrospector(FakeDatastore(default=DatastoreError("boom")))
    assert await introspector.fetch_table_columns("orders") == []


@pytest.mark.asyncio
async def test_remote_null_is_empty():
    introspector = SchemaIntrospector(FakeDatastore(default=None))
    assert await introspector.fetch_table_columns("orders") == []


def test_format_snippet():
    snippet = {"members": ["id", "name"], "orders": []}
    assert format_snippet(snippet) == "- members(id, name)\n- orders()"
