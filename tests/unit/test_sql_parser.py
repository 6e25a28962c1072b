"""
Unit tests for tablex.core.sql_parser (read-only query checks).
"""

from tablex.core.sql_parser import extract_table_references, find_word_references, parse_select


class TestParseSelect:
    def test_select_is_accepted(self) -> None:
        assert parse_select("SELECT id, status FROM orders WHERE amount > 3") is not None

    def test_union_is_a_query(self) -> None:
        assert parse_select("SELECT id FROM a UNION SELECT id FROM b") is not None

    def test_writes_are_rejected(self) -> None:
        assert parse_select("DELETE FROM orders") is None
        assert parse_select("UPDATE orders SET status = 'x'") is None
        assert parse_select("CREATE TABLE x (a TEXT)") is None

    def test_garbage_is_rejected(self) -> None:
        assert parse_select("SELECT * FROM (((") is None


class TestExtractTableReferences:
    def test_join_and_subquery(self) -> None:
        sql = (
            "SELECT o.id FROM Orders o JOIN customers c ON c.id = o.customer_id "
            "WHERE o.id IN (SELECT order_id FROM refunds)"
        )
        assert set(extract_table_references(sql)) == {"orders", "customers", "refunds"}

    def test_unparseable_returns_empty(self) -> None:
        assert extract_table_references("SELECT * FROM (((") == []


class TestFindWordReferences:
    def test_whole_words_only(self) -> None:
        names = frozenset({"admins", "sessions"})
        assert find_word_references("SELECT * FROM ADMINS", names) == ["admins"]
        assert find_word_references("SELECT * FROM admins_archive", names) == []
        assert find_word_references("SELECT * FROM user_sessions2", names) == []

    def test_reports_every_match_sorted(self) -> None:
        names = frozenset({"admins", "sessions"})
        sql = "SELECT * FROM sessions JOIN admins USING (id)"
        assert find_word_references(sql, names) == ["admins", "sessions"]
