"""Pull a bare SQL statement out of free-form LLM output."""

import re
from typing import Optional

FENCE_RE = re.compile(r"```(?:sql)?\n?([\s\S]*?)```", re.IGNORECASE)
INLINE_RE = re.compile(r"`([^`]+)`")
SELECT_RE = re.compile(r"\bselect\b", re.IGNORECASE)
TRAILING_SEMICOLON_RE = re.compile(r";\s*$")


def _strip_semicolon(sql: str) -> str:
    return TRAILING_SEMICOLON_RE.sub("", sql)


def sanitize_sql(text: Optional[str]) -> str:
    """
    Extract a single SQL statement from a completion.

    Order of preference:
        1. ```sql fenced block
        2. inline `...` span that contains SELECT
        3. everything from the first SELECT onwards
        4. the whole text with backticks removed

    Example:
        "Here you go:\\n```sql\\nSELECT 1 FROM members;\\n```"
        -> "SELECT 1 FROM members"
    """
    if not text:
        return ""
    t = str(text).strip()

    fence = FENCE_RE.search(t)
    if fence:
        return _strip_semicolon(fence.group(1).strip())

    for inline in INLINE_RE.finditer(t):
        if SELECT_RE.search(inline.group(1)):
            return _strip_semicolon(inline.group(1).strip())

    select = SELECT_RE.search(t)
    if select:
        sql = t[select.start():].strip()
        sql = sql.strip("`").strip()
        return _strip_semicolon(sql)

    return t.replace("`", "").strip()
