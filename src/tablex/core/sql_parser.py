"""
SQL Parser for read-only query checks

Uses SQLGlot to confirm a raw query is a SELECT and to extract the tables it
reads, so protected tables can be refused before the query reaches storage.
"""

import re

import sqlglot
from sqlglot import expressions as exp

DIALECT = "sqlite"


def parse_select(sql: str, dialect: str = DIALECT) -> exp.Expression | None:
    """Parse ``sql`` and return the expression when it is a query, else None."""
    try:
        parsed = sqlglot.parse_one(sql, dialect=dialect)
    except Exception:
        return None
    if isinstance(parsed, exp.Query):
        return parsed
    return None


def extract_table_references(sql: str, dialect: str = DIALECT) -> list[str]:
    """
    Extract every table name a statement reads, lower-cased.

    Args:
        sql: SQL query string
        dialect: SQL dialect (default: sqlite)

    Returns:
        Table names in order of appearance, without schema qualifiers.
        Empty when the statement cannot be parsed.
    """
    try:
        parsed = sqlglot.parse_one(sql, dialect=dialect)
    except Exception:
        return []
    if parsed is None:
        return []

    return [table.name.lower() for table in parsed.find_all(exp.Table) if table.name]


def find_word_references(sql: str, names: frozenset[str]) -> list[str]:
    """Return the names that appear in ``sql`` as whole words (case-insensitive)."""
    found: list[str] = []
    lowered = sql.lower()
    for name in sorted(names):
        if re.search(rf"(?<![A-Za-z0-9_]){re.escape(name.lower())}(?![A-Za-z0-9_])", lowered):
            found.append(name)
    return found
