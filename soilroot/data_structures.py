# soilroot/data_structures.py
from __future__ import annotations

import networkx as nx
import numpy as np
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from soilroot import utils, constants
from soilroot.geometry import Polyline

logger = logging.getLogger(__name__)

# --- Growth graph conventions ---
# Nodes live in an arena (a Python list) and are addressed by their integer index.
# The networkx DiGraph stores only index pairs for parent -> child links.

# Node attributes (on the RootNode object, mirrored on the graph node):
# - 'pos': (np.ndarray, shape (3,)) position on a soil sample point.
# - 'node_type': RootNodeType.STEM or RootNodeType.SIDE.
# - 'branch_level': (int) 0 for the stem lineage, +1 per branching event.

# Edge attributes (for edge u -> v):
# - 'length': (float) segment length.
# - 'kind': (str) 'main' for branch level 0, 'secondary' otherwise.


class RootNodeType(Enum):
    STEM = "stem"
    SIDE = "side"


class GrowthInvariantError(RuntimeError):
    """Raised when growth tries to build a structurally invalid graph."""


@dataclass
class GrowthResult:
    success: bool
    message: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str) -> "GrowthResult":
        logger.error(message)
        return cls(False, message)


class RootNode:
    def __init__(self, index: int, pos: np.ndarray, direction: np.ndarray, node_type: RootNodeType,
                 step: int = 0, step_counting: int = 0, lifespan: int = constants.UNLIMITED_LIFESPAN,
                 branch_level: int = 0, parent: Optional[int] = None):
        self.index: int = index
        self.pos: np.ndarray = utils.as_point(pos)
        self.direction: np.ndarray = utils.as_point(direction)
        self.node_type: RootNodeType = node_type
        self.step: int = step
        self.step_counting: int = step_counting
        self.lifespan: int = lifespan
        self.branch_level: int = branch_level
        self.parent: Optional[int] = parent
        self.active: bool = True

    @property
    def is_expired(self) -> bool:
        return self.lifespan == 0

    def __repr__(self):
        return (f"RootNode(index={self.index}, type={self.node_type.value}, step={self.step}, "
                f"lifespan={self.lifespan}, level={self.branch_level})")


class GrowthGraph:
    """Append-only root forest with redundant main / side line output."""

    def __init__(self):
        self.nodes: List[RootNode] = []
        self.graph: nx.DiGraph = nx.DiGraph()
        self.main_lines: List[Polyline] = []
        self.side_lines: List[Polyline] = []

    def __len__(self):
        return len(self.nodes)

    def node(self, index: int) -> RootNode:
        return self.nodes[index]

    def _append(self, node: RootNode) -> RootNode:
        self.nodes.append(node)
        self.graph.add_node(node.index, pos=node.pos, node_type=node.node_type, branch_level=node.branch_level)
        return node

    def add_root(self, pos, direction, node_type: RootNodeType = RootNodeType.STEM,
                 lifespan: int = constants.UNLIMITED_LIFESPAN) -> RootNode:
        return self._append(RootNode(len(self.nodes), pos, direction, node_type, lifespan=lifespan))

    def add_child(self, parent: RootNode, pos, node_type: RootNodeType,
                  branching: bool = False,
                  branch_lifespan: int = constants.SIDE_BRANCH_LIFESPAN) -> RootNode:
        """
        Appends a child under parent. Step counters advance by one, lifespan drops by one
        (unlimited stays unlimited), branch level is inherited, direction points from the
        parent to the child.

        A branching child instead opens a new lineage: branch level + 1, a fresh
        branch_lifespan and step_counting restarted at 1.

        Raises:
            GrowthInvariantError: a SIDE parent was given a STEM child.
        """
        if parent.node_type == RootNodeType.SIDE and node_type == RootNodeType.STEM:
            raise GrowthInvariantError(
                f"Side node {parent.index} cannot have a stem child."
            )
        pos = utils.as_point(pos)
        if branching:
            lifespan = branch_lifespan
            branch_level = parent.branch_level + 1
            step_counting = 1
        else:
            lifespan = parent.lifespan if parent.lifespan < 0 else parent.lifespan - 1
            branch_level = parent.branch_level
            step_counting = parent.step_counting + 1
        child = RootNode(
            index=len(self.nodes),
            pos=pos,
            direction=utils.normalize_vector(pos - parent.pos),
            node_type=node_type,
            step=parent.step + 1,
            step_counting=step_counting,
            lifespan=lifespan,
            branch_level=branch_level,
            parent=parent.index,
        )
        self._append(child)
        kind = "main" if child.branch_level == 0 else "secondary"
        self.graph.add_edge(parent.index, child.index, length=utils.distance(parent.pos, pos), kind=kind)
        return child

    def record_line(self, start, end, main: bool):
        line = Polyline.line(start, end)
        if main:
            self.main_lines.append(line)
        else:
            self.side_lines.append(line)

    def parent(self, index: int) -> Optional[RootNode]:
        p = self.nodes[index].parent
        return None if p is None else self.nodes[p]

    def children(self, index: int) -> List[RootNode]:
        return [self.nodes[c] for c in self.graph.successors(index)]

    def descendants(self, index: int) -> List[int]:
        return sorted(nx.descendants(self.graph, index))

    def lineage_depth(self, index: int) -> int:
        """Number of nodes on the path from the tree root down to index, inclusive."""
        depth = 1
        node = self.nodes[index]
        while node.parent is not None:
            depth += 1
            node = self.nodes[node.parent]
        return depth

    def turn_off(self, index: int) -> int:
        """Deactivates a node and its whole subtree; returns how many nodes changed state."""
        changed = 0
        for i in [index] + self.descendants(index):
            if self.nodes[i].active:
                self.nodes[i].active = False
                changed += 1
        return changed

    def edges_as_lines(self, active_only: bool = False, kind: Optional[str] = None) -> List[Polyline]:
        lines = []
        for u, v, data in self.graph.edges(data=True):
            if kind is not None and data.get("kind") != kind:
                continue
            if active_only and not self.nodes[v].active:
                continue
            lines.append(Polyline.line(self.nodes[u].pos, self.nodes[v].pos))
        return lines

    def inactive_edges_as_lines(self) -> List[Polyline]:
        return [Polyline.line(self.nodes[u].pos, self.nodes[v].pos)
                for u, v in self.graph.edges() if not self.nodes[v].active]
