"""Static safety gate for generated SQL.

The regex rules are a heuristic, not a parser. They are followed by an
optional sqlglot cross-check that can only reject more statements.
"""

import logging
import re
from typing import List, Optional

import sqlglot
from pydantic import BaseModel, Field
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from app.core.config import settings

logger = logging.getLogger(__name__)

ALLOWED_TABLES = ("members", "products", "orders", "order_items")

# Trailing space keeps "updated_at" or "created_at" from matching
FORBIDDEN_KEYWORDS = (
    "insert ",
    "update ",
    "delete ",
    "drop ",
    "alter ",
    "truncate ",
    "grant ",
    "revoke ",
    "create ",
    "copy ",
)
CHAINED_COMMENT_RE = re.compile(r";\s*--")
SELECT_RE = re.compile(r"\bselect\b", re.IGNORECASE)
FROM_RE = re.compile(r"from\s+([^\s,;()]+)", re.IGNORECASE)
JOIN_RE = re.compile(r"join\s+([^\s,;()]+)", re.IGNORECASE)


class SQLVerdict(BaseModel):
    ok: bool
    reason: Optional[str] = None
    tables: List[str] = Field(default_factory=list)


def _clean_identifier(token: str) -> str:
    token = token.strip()
    if token.startswith('"') and token.endswith('"'):
        token = token[1:-1]
    if "." in token:
        token = token.split(".")[-1]
    return token.replace('"', "")


def extract_table_names(sql: str) -> List[str]:
    """
    Collect identifiers that follow FROM / JOIN.

    Subqueries are skipped, quotes and schema prefixes are removed.
    FROM matches come first, then JOIN matches, each in order of appearance.

    Example:
        'SELECT * FROM public."orders" o JOIN members m ON ...'
        -> ["orders", "members"]
    """
    flattened = sql.replace("\n", " ")
    names: List[str] = []
    for pattern in (FROM_RE, JOIN_RE):
        for match in pattern.finditer(flattened):
            token = match.group(1).strip()
            if token.startswith("("):
                continue
            name = _clean_identifier(token)
            if name and name not in names:
                names.append(name)
    return names


def _parser_rejection(sql: str) -> Optional[str]:
    try:
        statements = [s for s in sqlglot.parse(sql, read="postgres") if s is not None]
    except (ParseError, TokenError) as e:
        return f"SQL could not be parsed: {e}"

    if len(statements) != 1:
        return "Exactly one statement is allowed."

    statement = statements[0]
    if not isinstance(statement, exp.Query):
        return f"Only SELECT queries are allowed, got {statement.key.upper()}."

    cte_names = {cte.alias_or_name for cte in statement.find_all(exp.CTE)}
    referenced = []
    for table in statement.find_all(exp.Table):
        name = table.name
        if not name or (name in cte_names and not table.db):
            continue
        if name not in referenced:
            referenced.append(name)

    disallowed = [t for t in referenced if t not in ALLOWED_TABLES]
    if disallowed:
        return f"Disallowed tables referenced: {', '.join(disallowed)}"
    return None


def validate_sql(sql: str, parser_check: Optional[bool] = None) -> SQLVerdict:
    """
    Decide whether a candidate statement may be executed.

    Rules run in order and the first failure wins:
        1. no mutating keyword and no ";--" chaining
        2. a SELECT is present
        3. at least one table after FROM/JOIN
        4. every table is in ALLOWED_TABLES
        5. (optional) sqlglot agrees it is a single read query over allowed tables
    """
    raw = (sql or "").strip()
    lowered = raw.lower()

    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in lowered:
            return SQLVerdict(
                ok=False, reason=f"Forbidden keyword detected: {keyword.strip()}"
            )
    if CHAINED_COMMENT_RE.search(lowered):
        return SQLVerdict(ok=False, reason="Forbidden keyword detected: ;--")

    if not SELECT_RE.search(lowered):
        return SQLVerdict(ok=False, reason="No SELECT statement found.")

    tables = extract_table_names(raw)
    if not tables:
        return SQLVerdict(ok=False, reason="No table found in FROM/JOIN clauses.")

    disallowed = [t for t in tables if t not in ALLOWED_TABLES]
    if disallowed:
        return SQLVerdict(
            ok=False,
            reason=f"Disallowed tables referenced: {', '.join(disallowed)}",
            tables=tables,
        )

    if parser_check is None:
        parser_check = settings.SQL_PARSER_CHECK
    if parser_check:
        rejection = _parser_rejection(raw)
        if rejection:
            logger.info(f"Parser check rejected SQL: {rejection}")
            return SQLVerdict(ok=False, reason=rejection, tables=tables)

    return SQLVerdict(ok=True, tables=tables)
