"""Resolve exact column names for the tables a candidate query touches."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.core.database import Datastore

logger = logging.getLogger(__name__)

CREATE_TABLE_RE = re.compile(
    r"create table\s+(?:if not exists\s+)?(?:[a-zA-Z_][\w]*\.)?\"?([a-zA-Z_][\w]*)\"?\s*\(([\s\S]*?)\);",
    re.IGNORECASE,
)
CONSTRAINT_LINE_RE = re.compile(
    r"^(primary key|unique|foreign key|constraint)\b", re.IGNORECASE
)

COLUMNS_QUERY = (
    "select json_agg(t) from (select column_name from information_schema.columns "
    "where table_name = '{table}' and table_schema = 'public' "
    "order by ordinal_position) t"
)


def parse_schema_text(schema_text: str) -> Dict[str, List[str]]:
    """
    Parse ``create table`` blocks into {table: [column, ...]}.

    Example:
        create table members (
          id uuid primary key,
          name text not null,
          constraint members_email_key unique (email)
        );
        -> {"members": ["id", "name"]}
    """
    tables: Dict[str, List[str]] = {}
    for match in CREATE_TABLE_RE.finditer(schema_text):
        table, body = match.group(1), match.group(2)
        columns = []
        for line in body.splitlines():
            line = line.strip()
            if not line or line.startswith("--"):
                continue
            line = line.rstrip(",").strip()
            if CONSTRAINT_LINE_RE.match(line):
                continue
            column = line.split()[0].replace('"', "").replace("`", "").strip()
            if column and "(" not in column:
                columns.append(column)
        tables[table] = columns
    return tables


def _column_names(value: Any) -> Iterable[str]:
    # Remote shapes: "id", {"column_name": "id"}, {"json_agg": [...]},
    # {"result": [...]}, nested lists, or any of these as JSON text
    if value is None:
        return
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("[", "{")):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if parsed is not None:
                yield from _column_names(parsed)
                return
        if text:
            yield text
    elif isinstance(value, dict):
        if value.get("column_name"):
            yield value["column_name"]
        elif "json_agg" in value:
            yield from _column_names(value["json_agg"])
        elif "result" in value:
            yield from _column_names(value["result"])
    elif isinstance(value, list):
        for item in value:
            yield from _column_names(item)


class SchemaIntrospector:
    def __init__(self, datastore: Datastore, schema_paths: Sequence[str] = ()):
        self.datastore = datastore
        self.schema_paths = list(schema_paths)

    def load_local_schema(self) -> Optional[Dict[str, List[str]]]:
        """Parse the first readable schema file, or None when there is none."""
        for candidate in self.schema_paths:
            path = Path(candidate)
            if not path.is_file():
                continue
            try:
                return parse_schema_text(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read schema file {path}: {e}")
        return None

    async def fetch_table_columns(
        self, table: str, local_schema: Optional[Dict[str, List[str]]] = None
    ) -> List[str]:
        if local_schema and local_schema.get(table):
            return list(local_schema[table])

        try:
            payload = await self.datastore.execute(COLUMNS_QUERY.format(table=table))
        except Exception as e:
            logger.warning(f"Could not fetch columns for {table}: {e}")
            return []

        columns: List[str] = []
        for name in _column_names(payload):
            if name not in columns:
                columns.append(name)
        return columns

    async def build_snippet(self, tables: Sequence[str]) -> Dict[str, List[str]]:
        local_schema = self.load_local_schema()
        snippet: Dict[str, List[str]] = {}
        for table in tables:
            snippet[table] = await self.fetch_table_columns(table, local_schema)
        return snippet


def format_snippet(snippet: Dict[str, List[str]]) -> str:
    return "\n".join(f"- {table}({', '.join(cols)})" for table, cols in snippet.items())
