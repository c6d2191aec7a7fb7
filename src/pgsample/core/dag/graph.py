# src/pgsample/core/dag/graph.py
"""DependencyGraph class: the foreign-key graph of one sync.

Nodes are TableRefs, edges point from the referencing table to the
referenced table and carry the ForeignKeyEdge. The graph is rebuilt for
every request and never validated: cycles, self-references and targets
outside the synced schema are all legal.
"""

from __future__ import annotations

from collections.abc import Iterable

import networkx as nx
from networkx import MultiDiGraph

from pgsample.contracts.tables import EdgeRecord, ForeignKeyEdge, TableRef


class DependencyGraph:
    """Foreign-key graph of a schema.

    Wraps NetworkX MultiDiGraph with domain-specific operations.
    Uses MultiDiGraph because one table may reference another through
    several foreign keys (e.g. orders.billing_address and
    orders.shipping_address both referencing addresses).
    """

    def __init__(self) -> None:
        self._graph: MultiDiGraph[TableRef] = nx.MultiDiGraph()
        self._source_tables: set[TableRef] = set()

    @classmethod
    def from_edges(cls, records: Iterable[EdgeRecord]) -> DependencyGraph:
        """Build the graph from catalog records.

        Every record's table becomes a source table node; every edge adds its
        referenced table as a node too, even when that table never appears as
        a record of its own (a table in another schema, or one without
        outgoing keys that the catalog omitted).
        """
        graph = cls()
        for record in records:
            graph._add_table(record.table, source=True)
            if record.edge is not None:
                graph._add_edge(record.edge)
        return graph

    def _add_table(self, table: TableRef, *, source: bool) -> None:
        if table not in self._graph:
            self._graph.add_node(table)
        if source:
            self._source_tables.add(table)

    def _add_edge(self, edge: ForeignKeyEdge) -> None:
        self._add_table(edge.source, source=False)
        self._add_table(edge.referenced, source=False)
        # Catalog rows can repeat a constraint (one per schema listing); keep one.
        for _, _, existing in self._graph.out_edges(edge.source, data="fk"):
            if existing == edge:
                return
        self._graph.add_edge(edge.source, edge.referenced, fk=edge)

    @property
    def table_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def has_table(self, table: TableRef) -> bool:
        return table in self._graph

    def tables(self) -> list[TableRef]:
        """All tables, sorted by (schema, name) for deterministic traversal."""
        return sorted(self._graph.nodes)

    def source_tables(self) -> list[TableRef]:
        """Tables that appeared as catalog records (the synced schema), sorted."""
        return sorted(self._source_tables)

    def is_source_table(self, table: TableRef) -> bool:
        return table in self._source_tables

    def outgoing(self, table: TableRef) -> list[ForeignKeyEdge]:
        """Foreign keys declared on table, in catalog order.

        Unknown tables have no outgoing keys.
        """
        if table not in self._graph:
            return []
        return [fk for _, _, fk in self._graph.out_edges(table, data="fk")]

    def incoming(self, table: TableRef) -> list[ForeignKeyEdge]:
        """Foreign keys on other tables (or table itself) that reference table."""
        if table not in self._graph:
            return []
        return [fk for _, _, fk in self._graph.in_edges(table, data="fk")]

    def is_self_referencing(self, table: TableRef) -> bool:
        return table in self._graph and self._graph.has_edge(table, table)

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._graph)

    def cycles(self) -> list[list[TableRef]]:
        """Reference cycles, each as a list of tables. Used for logging only."""
        return [sorted(cycle) for cycle in nx.simple_cycles(nx.DiGraph(self._graph))]
