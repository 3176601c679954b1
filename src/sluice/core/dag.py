# src/sluice/core/dag.py
"""Stage graph: execution order from the dependency/product table relation.

Uses NetworkX for acyclicity validation and topological sorting. An edge
A -> B exists when stage B lists in dependency_tables a table that stage A
lists in product_tables.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence

import networkx as nx

from sluice.contracts.subtask import SubTaskMeta


class StageGraphError(Exception):
    """Raised when the stage relation has a cycle or names an unknown stage."""

    pass


class StageGraph:
    """Directed graph of stages, producer -> consumer.

    Example:
        graph = StageGraph(registry.metas)
        for meta in graph.order():
            ...
    """

    def __init__(self, metas: Sequence[SubTaskMeta]) -> None:
        self._graph = nx.DiGraph()
        self._index: dict[str, int] = {}
        self._metas: dict[str, SubTaskMeta] = {}

        producers: dict[str, list[str]] = defaultdict(list)
        for index, meta in enumerate(metas):
            if meta.name in self._metas:
                raise StageGraphError(f"Duplicate stage name: {meta.name!r}")
            self._metas[meta.name] = meta
            self._index[meta.name] = index
            self._graph.add_node(meta.name)
            for table in meta.product_tables:
                producers[table].append(meta.name)

        for meta in metas:
            for table in meta.dependency_tables:
                for producer in producers.get(table, ()):
                    # A stage that reads back its own product is not a cycle
                    if producer == meta.name:
                        continue
                    if self._graph.has_edge(producer, meta.name):
                        self._graph.edges[producer, meta.name]["tables"].append(table)
                    else:
                        self._graph.add_edge(producer, meta.name, tables=[table])

        if not nx.is_directed_acyclic_graph(self._graph):
            try:
                cycle = nx.find_cycle(self._graph)
                cycle_str = " -> ".join([edge[0] for edge in cycle] + [cycle[0][0]])
                raise StageGraphError(f"Stage dependencies contain a cycle: {cycle_str}")
            except nx.NetworkXNoCycle:
                raise StageGraphError("Stage dependencies contain a cycle") from None

    def __contains__(self, name: object) -> bool:
        return name in self._metas

    def __len__(self) -> int:
        return len(self._metas)

    def get(self, name: str) -> SubTaskMeta:
        try:
            return self._metas[name]
        except KeyError:
            raise StageGraphError(f"Unknown stage: {name!r}") from None

    def order(self) -> list[SubTaskMeta]:
        """Stages in topological order, ties broken by registration order."""
        names = nx.lexicographical_topological_sort(self._graph, key=lambda name: self._index[name])
        return [self._metas[name] for name in names]

    def producers_of(self, name: str) -> list[str]:
        """Stages whose products this stage reads directly."""
        self.get(name)
        return sorted(self._graph.predecessors(name), key=self._index.__getitem__)

    def upstream(self, name: str) -> set[str]:
        """Every stage this one transitively depends on."""
        self.get(name)
        return set(nx.ancestors(self._graph, name))

    def tables_between(self, producer: str, consumer: str) -> list[str]:
        """Tables written by producer and read by consumer."""
        if not self._graph.has_edge(producer, consumer):
            return []
        return list(self._graph.edges[producer, consumer]["tables"])

    def validate_selection(self, names: Iterable[str]) -> set[str]:
        """Check an explicit stage selection against the graph.

        Raises:
            StageGraphError: If a name is not a registered stage
        """
        selected = set(names)
        unknown = sorted(name for name in selected if name not in self._metas)
        if unknown:
            raise StageGraphError(f"Unknown stage(s) selected: {', '.join(unknown)}")
        return selected
