"""
Table Dependency Graph

Orders tables by their foreign-key references using NetworkX so referenced
tables are created before, and dropped after, the tables that point at them.
"""

import logging
from collections.abc import Iterable, Mapping

import networkx as nx

from tablex.domain.models import ForeignKeyDescriptor

logger = logging.getLogger(__name__)


class TableDependencyGraph:
    """
    Directed graph of foreign-key references between tables.

    Edge direction: ``parent -> child`` means ``child`` references ``parent``
    and must be created after it.
    """

    def __init__(self) -> None:
        self.graph: nx.DiGraph = nx.DiGraph()

    @classmethod
    def from_foreign_keys(
        cls, tables: Mapping[str, Iterable[ForeignKeyDescriptor]]
    ) -> "TableDependencyGraph":
        """Build the graph for ``tables``; references to tables outside the mapping are ignored."""
        graph = cls()
        by_lower = {name.lower(): name for name in tables}
        for name in tables:
            graph.graph.add_node(name)
        for name, foreign_keys in tables.items():
            for foreign_key in foreign_keys:
                parent = by_lower.get(foreign_key.ref_table.lower())
                if parent is None or parent == name:
                    continue
                graph.graph.add_edge(parent, name)
        return graph

    def get_dependents(self, table: str) -> list[str]:
        """Tables that reference ``table`` directly."""
        if table not in self.graph:
            return []
        return sorted(self.graph.successors(table))

    def detect_cycles(self) -> list[list[str]]:
        return [list(cycle) for cycle in nx.simple_cycles(self.graph)]

    def creation_order(self) -> list[str]:
        """Referenced tables first; ties broken by name for a stable order."""
        try:
            return list(nx.lexicographical_topological_sort(self.graph))
        except nx.NetworkXUnfeasible:
            logger.warning(
                "Foreign-key cycle between tables %s; falling back to name order",
                self.detect_cycles(),
            )
            return sorted(self.graph.nodes)

    def drop_order(self) -> list[str]:
        """Dependent tables first."""
        return list(reversed(self.creation_order()))
