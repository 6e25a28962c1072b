"""
SQL utilities - identifier handling and statement splitting.

Every identifier that reaches generated SQL passes through ``quote_identifier``,
which refuses anything outside the identifier pattern.
"""

import re

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_identifier(name: object) -> bool:
    """Return True when ``name`` is a string matching the identifier pattern."""
    return isinstance(name, str) and IDENTIFIER_PATTERN.match(name) is not None


def quote_identifier(name: str) -> str:
    """Double-quote a validated identifier.

    Raises:
        ValueError: If the name is not a valid identifier
    """
    if not is_valid_identifier(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def column_list(names: list[str]) -> str:
    """Comma-separated list of quoted column names."""
    return ", ".join(quote_identifier(name) for name in names)


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _process_line(
    line: str,
    current: list[str],
    in_single_quote: bool,
    in_double_quote: bool,
) -> tuple[list[str], bool, bool, list[str], bool]:
    """Process one line; update quote state and collect any completed statements.

    Returns:
        (updated_current, new_in_single, new_in_double, completed_statements, saw_statement_end)
    """
    completed: list[str] = []
    new_single = in_single_quote
    new_double = in_double_quote
    new_current = list(current)
    saw_end = False

    for char in line:
        if char == "'" and not new_double:
            new_single = not new_single
        elif char == '"' and not new_single:
            new_double = not new_double

        if char == ";" and not new_single and not new_double:
            statement = "".join(new_current).strip()
            if statement:
                completed.append(statement)
            new_current = []
            saw_end = True
            continue
        new_current.append(char)

    return (new_current, new_single, new_double, completed, saw_end)


def split_sql_statements(sql_text: str) -> list[str]:
    """Split SQL text into statements while preserving quoted semicolons.

    Semicolons inside single- or double-quoted strings stay part of the
    statement. Lines that are entirely comment (start with --) are skipped.
    Empty statements are not included.

    Args:
        sql_text: Raw SQL text

    Returns:
        List of non-empty statement strings, in order.
    """
    statements: list[str] = []
    current: list[str] = []
    in_single_quote = False
    in_double_quote = False

    for line in sql_text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue

        current, in_single_quote, in_double_quote, completed, _ = _process_line(
            line, current, in_single_quote, in_double_quote
        )
        statements.extend(completed)
        current.append("\n")

    tail = "".join(current).strip()
    if tail:
        statements.append(tail)

    return statements
