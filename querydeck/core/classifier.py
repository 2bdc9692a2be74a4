"""
Keyword classification of custom query SQL.

No SQL grammar is involved: the statement's leading keyword decides the HTTP
method, and a leading SELECT or any mention of "pragma" marks it read-only.
The read-only flag is a hint for how the engine runs the statement, not a
security boundary. Swap `classify` for a parser-backed version without
touching its callers.
"""

from typing import NamedTuple

from querydeck.core.schemas import HttpMethod


class Classification(NamedTuple):
    method: HttpMethod
    is_readonly: bool


def classify(sql: str) -> Classification:
    normalized = (sql or "").strip().lower()
    is_select = normalized.startswith("select")
    # Any mention counts, including one inside a comment or string literal
    mentions_pragma = "pragma" in normalized

    return Classification(
        method=HttpMethod.GET if is_select else HttpMethod.POST,
        is_readonly=is_select or mentions_pragma,
    )
