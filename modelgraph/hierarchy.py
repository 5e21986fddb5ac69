"""
Parent-chain helpers for the container hierarchy.

Parent links are weak references: a parent id that is not in the map ends
the chain (it is treated as root) instead of raising.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set

import networkx as nx

from modelgraph.models import Node

logger = logging.getLogger(__name__)


def parent_map(nodes: Iterable[Node]) -> Dict[str, Optional[str]]:
    """Map node id -> parent id for the given nodes."""
    return {node.id: node.parent_node_id for node in nodes}


def would_create_cycle(
    parents: Mapping[str, Optional[str]], node_id: str, candidate_parent_id: Optional[str]
) -> bool:
    """
    Check whether making `candidate_parent_id` the parent of `node_id` creates a cycle.

    Walks from the candidate towards the root; revisiting `node_id` means
    the node would become its own ancestor.
    """
    if candidate_parent_id is None:
        return False
    visited: Set[str] = set()
    current: Optional[str] = candidate_parent_id
    while current is not None:
        if current == node_id:
            return True
        if current in visited:
            # Pre-existing loop that does not pass through node_id
            return False
        visited.add(current)
        current = parents.get(current)
    return False


def ancestors(parents: Mapping[str, Optional[str]], node_id: str) -> List[str]:
    """Ancestor ids from the direct parent up to the root."""
    chain: List[str] = []
    seen = {node_id}
    current = parents.get(node_id)
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = parents.get(current)
    return chain


def build_hierarchy(nodes: Iterable[Node]) -> nx.DiGraph:
    """Directed parent -> child graph; dangling parent ids are ignored."""
    graph = nx.DiGraph()
    node_list = list(nodes)
    for node in node_list:
        graph.add_node(node.id, name=node.name, category=node.category.value)
    for node in node_list:
        if node.parent_node_id and node.parent_node_id in graph:
            graph.add_edge(node.parent_node_id, node.id)
    return graph


def descendants(nodes: Iterable[Node], node_id: str) -> Set[str]:
    """All ids below `node_id` in the hierarchy."""
    graph = build_hierarchy(nodes)
    if node_id not in graph:
        return set()
    return set(nx.descendants(graph, node_id))


def selection_depths(parents: Mapping[str, Optional[str]], selected: Iterable[str]) -> Dict[str, int]:
    """
    Depth of each selected node counted only through selected ancestors.

    A node whose parent is also selected has depth 1 + the parent's depth;
    otherwise its depth is 0. Iterative with memoization, so deep chains
    never hit the recursion limit.
    """
    selected_set = set(selected)
    depths: Dict[str, int] = {}
    for start in selected_set:
        if start in depths:
            continue
        chain: List[str] = []
        on_chain: Set[str] = set()
        current: Optional[str] = start
        base = -1
        while current is not None and current in selected_set:
            if current in depths:
                base = depths[current]
                break
            if current in on_chain:
                break
            chain.append(current)
            on_chain.add(current)
            current = parents.get(current)
        for offset, node_id in enumerate(reversed(chain)):
            depths[node_id] = base + 1 + offset
    return depths


def order_by_selection_depth(parents: Mapping[str, Optional[str]], selected: List[str]) -> List[str]:
    """Selected ids ordered so every selected parent precedes its selected children."""
    depths = selection_depths(parents, selected)
    position = {node_id: i for i, node_id in enumerate(selected)}
    return sorted(dict.fromkeys(selected), key=lambda n: (depths.get(n, 0), position[n]))


def break_cycles(parents: Dict[str, Optional[str]]) -> List[str]:
    """
    Detach nodes until the parent graph is acyclic; mutates `parents`.

    Returns the ids whose parent was cleared.
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(parents)
    graph.add_edges_from(
        (parent, child) for child, parent in parents.items() if parent is not None and parent in parents
    )
    cut: List[str] = []
    while True:
        try:
            cycle = nx.find_cycle(graph)
        except nx.NetworkXNoCycle:
            break
        parent, child = cycle[-1][0], cycle[-1][1]
        graph.remove_edge(parent, child)
        parents[child] = None
        cut.append(child)
    if cut:
        logger.warning(f"Broke {len(cut)} parent cycle(s) by detaching: {', '.join(sorted(cut))}")
    return cut
