"""
Node storage for fitted decision trees.

Nodes live in a :class:`NodeArena` and refer to their children by index
instead of by object reference. The arena keeps serialization flat and lets
``apply`` walk all samples down the tree level by level without recursion.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import numpy as np

# Child index of a missing child.
TREE_LEAF = -1
# Feature index / leaf id of a node where the field does not apply.
TREE_UNDEFINED = -2


# =============================================================================
# Node Data Structure
# =============================================================================

@dataclass
class Node:
    """
    Represents a node in a decision tree.

    Attributes
    ----------
    depth : int
        Depth of this node in the tree (root is 0).
    impurity : float
        Criterion value of the node's samples before splitting.
    n_samples : int
        Number of training samples that reached this node.
    leaf : bool
        Whether this node is a leaf.
    leaf_id : int
        Position of the leaf payload in the tree's leaf table
        (leaves only, ``TREE_UNDEFINED`` otherwise).
    left : int
        Arena index of the left child, ``TREE_LEAF`` if absent.
    right : int
        Arena index of the right child, ``TREE_LEAF`` if absent.
    feature_id : int
        Feature used to split (internal nodes only).
    threshold : float
        Samples with ``x[feature_id] <= threshold`` go left (internal nodes only).
    """
    depth: int = 0
    impurity: float = 0.0
    n_samples: int = 0
    leaf: bool = True
    leaf_id: int = TREE_UNDEFINED
    left: int = TREE_LEAF
    right: int = TREE_LEAF
    feature_id: int = TREE_UNDEFINED
    threshold: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize node to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        """Deserialize node from dictionary."""
        return cls(**data)


# =============================================================================
# Node Arena
# =============================================================================

class NodeArena:
    """
    Index-addressed store of the nodes of one tree.

    The root is always node 0. Nodes are appended in pre-order while the
    tree grows, so a parent always has a smaller index than its children.
    """

    def __init__(self, nodes: Optional[List[Node]] = None):
        self.nodes: List[Node] = nodes if nodes is not None else []
        self._arrays: Optional[Dict[str, np.ndarray]] = None

    def add(self, node: Node) -> int:
        """Append a node and return its index."""
        self.nodes.append(node)
        self._arrays = None
        return len(self.nodes) - 1

    def __getitem__(self, index: int) -> Node:
        return self.nodes[index]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    @property
    def root(self) -> Node:
        return self.nodes[0]

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in self.nodes if node.leaf)

    @property
    def max_depth(self) -> int:
        return max(node.depth for node in self.nodes)

    def _compile(self) -> Dict[str, np.ndarray]:
        """Gather node fields into flat arrays for vectorized traversal."""
        if self._arrays is None:
            self._arrays = {
                "left": np.array([n.left for n in self.nodes], dtype=np.intp),
                "right": np.array([n.right for n in self.nodes], dtype=np.intp),
                "feature": np.array(
                    [max(n.feature_id, 0) for n in self.nodes], dtype=np.intp
                ),
                "threshold": np.array(
                    [n.threshold for n in self.nodes], dtype=float
                ),
                "leaf": np.array([n.leaf for n in self.nodes], dtype=bool),
                "leaf_id": np.array([n.leaf_id for n in self.nodes], dtype=np.intp),
            }
        return self._arrays

    def apply(self, X: np.ndarray) -> np.ndarray:
        """
        Return the leaf id reached by each sample.

        All samples descend one level per iteration, so the loop runs at
        most ``max_depth`` times and never recurses. An internal node with
        a single live child sends every sample to that child.

        Parameters
        ----------
        X : np.ndarray of shape (n_samples, n_features)
            Input samples.

        Returns
        -------
        leaf_ids : np.ndarray of shape (n_samples,)
            Leaf id per sample.
        """
        arrays = self._compile()
        left, right = arrays["left"], arrays["right"]
        node_ids = np.zeros(X.shape[0], dtype=np.intp)

        active = np.flatnonzero(~arrays["leaf"][node_ids])
        while active.size > 0:
            current = node_ids[active]
            values = X[active, arrays["feature"][current]]
            go_left = values <= arrays["threshold"][current]
            next_ids = np.where(go_left, left[current], right[current])
            next_ids = np.where(left[current] == TREE_LEAF, right[current], next_ids)
            next_ids = np.where(right[current] == TREE_LEAF, left[current], next_ids)
            node_ids[active] = next_ids
            active = active[~arrays["leaf"][next_ids]]

        return arrays["leaf_id"][node_ids]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the arena as a list of node dictionaries."""
        return {"nodes": [node.to_dict() for node in self.nodes]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeArena":
        """Deserialize an arena produced by :meth:`to_dict`."""
        return cls([Node.from_dict(node) for node in data["nodes"]])

    def __getstate__(self) -> Dict[str, Any]:
        return {"nodes": self.nodes}

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.nodes = state["nodes"]
        self._arrays = None


__all__ = ["Node", "NodeArena", "TREE_LEAF", "TREE_UNDEFINED"]
