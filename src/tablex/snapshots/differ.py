"""Textual comparison between two captured schemas."""

from tablex.domain.results import SnapshotComparison

from .capture import CapturedTable


def compare_tables(before: list[CapturedTable], after: list[CapturedTable]) -> SnapshotComparison:
    """Tables added, removed, and present in both with different definition text."""
    before_by_name = {table.name: table for table in before}
    after_by_name = {table.name: table for table in after}

    added = sorted(set(after_by_name) - set(before_by_name))
    removed = sorted(set(before_by_name) - set(after_by_name))
    modified = sorted(
        name
        for name in set(before_by_name) & set(after_by_name)
        if sorted(before_by_name[name].definition_texts())
        != sorted(after_by_name[name].definition_texts())
    )
    return SnapshotComparison(added=added, removed=removed, modified=modified)
