"""Graph-based tensor network container with label-based contraction.

TensorNetwork holds the site tensors of a chain (an MPS or an MPO) keyed by
site number.  The graph structure (networkx.MultiGraph) tracks which legs are
connected, and the contraction engine (contractor.py) handles the actual
computation when a full or partial contraction is requested.

Key design choices:
- Edges are identified by (node_a, label_a, node_b, label_b), never by position
- connect_by_shared_label() auto-connects nodes that share a label name
- Contraction cache keyed by tuple[NodeId] (order-sensitive)
- Cache invalidated on any graph structure change (add/replace/connect)
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from typing import Any

import networkx as nx

from dmrgjax.contraction.contractor import _labels_to_subscripts, contract_with_subscripts
from dmrgjax.core.index import Label, TensorIndex
from dmrgjax.core.tensor import Tensor

NodeId = Hashable


class TensorNetwork:
    """Graph-based container for a tensor network.

    The internal representation is an nx.MultiGraph where:
    - Nodes are the node ids; the tensors live in a side dict.
    - Edges store which leg labels are connected: (label_a, label_b).
    - "Open" legs (no counterpart) represent physical/free indices.

    Args:
        name: Optional human-readable name for this network.

    Example:
        >>> tn = TensorNetwork()
        >>> tn.add_node(0, tensor_A)
        >>> tn.add_node(1, tensor_B)
        >>> tn.connect_by_shared_label(0, 1)
        >>> result = tn.contract()
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._graph: nx.MultiGraph = nx.MultiGraph()
        self._tensors: dict[NodeId, Tensor] = {}
        self._cache: dict[Any, Tensor] = {}

    # ------------------------------------------------------------------ #
    # Node management                                                      #
    # ------------------------------------------------------------------ #

    def add_node(self, node_id: NodeId, tensor: Tensor) -> None:
        """Add a tensor as a node in the network.

        Raises:
            ValueError: If node_id already exists.
            ValueError: If tensor has duplicate labels.
        """
        if node_id in self._tensors:
            raise ValueError(
                f"Node {node_id!r} already exists. Use replace_tensor() to update."
            )

        labels = tensor.labels()
        if len(labels) != len(set(labels)):
            dupes = [lbl for lbl in labels if labels.count(lbl) > 1]
            raise ValueError(
                f"Tensor for node {node_id!r} has duplicate labels: {dupes}"
            )

        self._graph.add_node(node_id)
        self._tensors[node_id] = tensor
        self._invalidate_cache()

    def replace_tensor(self, node_id: NodeId, tensor: Tensor) -> None:
        """Replace the tensor at an existing node.

        The new tensor must have the same set of labels as the old one,
        since labels define the connectivity in the graph.  Bond dimensions
        may differ.

        Raises:
            KeyError:   If node_id not found.
            ValueError: If the label sets differ.
        """
        if node_id not in self._tensors:
            raise KeyError(f"Node {node_id!r} not found")

        old_labels = set(self._tensors[node_id].labels())
        new_labels = set(tensor.labels())
        if old_labels != new_labels:
            raise ValueError(
                f"Replacement tensor has different labels. "
                f"Old: {sorted(old_labels, key=str)}, New: {sorted(new_labels, key=str)}"
            )

        self._tensors[node_id] = tensor
        self._invalidate_cache()

    def get_tensor(self, node_id: NodeId) -> Tensor:
        """Return the tensor stored at a node.

        Raises:
            KeyError: If *node_id* is not in the network.
        """
        if node_id not in self._tensors:
            raise KeyError(f"Node {node_id!r} not found")
        return self._tensors[node_id]

    # ------------------------------------------------------------------ #
    # Edge management                                                      #
    # ------------------------------------------------------------------ #

    def connect(
        self,
        node_a: NodeId,
        label_a: Label,
        node_b: NodeId,
        label_b: Label,
    ) -> None:
        """Connect a specific leg of node_a to a specific leg of node_b.

        The TensorIndex objects must be compatible (same symmetry type,
        same dimension, opposite flows).

        Raises:
            KeyError:   If either node or label is not found.
            ValueError: If the two TensorIndex objects are incompatible.
        """
        idx_a = self._get_index(node_a, label_a)
        idx_b = self._get_index(node_b, label_b)

        if not idx_a.compatible_with(idx_b):
            raise ValueError(
                f"Incompatible indices: "
                f"{node_a!r}[{label_a!r}] (dim={idx_a.dim}, flow={idx_a.flow.name}) "
                f"and {node_b!r}[{label_b!r}] (dim={idx_b.dim}, flow={idx_b.flow.name})"
            )

        self._graph.add_edge(node_a, node_b, label_a=label_a, label_b=label_b)
        self._invalidate_cache()

    def connect_by_shared_label(self, node_a: NodeId, node_b: NodeId) -> int:
        """Auto-connect all legs sharing the same label between two nodes.

        Returns:
            Number of connections made.

        Raises:
            ValueError: If no shared labels exist or they are incompatible.
        """
        labels_a = set(self.get_tensor(node_a).labels())
        labels_b = set(self.get_tensor(node_b).labels())
        shared = labels_a & labels_b

        if not shared:
            raise ValueError(
                f"No shared labels between {node_a!r} "
                f"(labels={sorted(labels_a, key=str)}) and {node_b!r} "
                f"(labels={sorted(labels_b, key=str)})"
            )

        for label in sorted(shared, key=str):
            self.connect(node_a, label, node_b, label)

        return len(shared)

    # ------------------------------------------------------------------ #
    # Contraction                                                          #
    # ------------------------------------------------------------------ #

    def contract(
        self,
        nodes: list[NodeId] | None = None,
        output_labels: Sequence[Label] | None = None,
        optimize: str = "auto",
        cache: bool = True,
    ) -> Tensor:
        """Contract a subset of nodes (or all nodes if nodes is None).

        Builds an einsum subscript string from the graph edge connectivity
        (contracting connected legs, keeping free legs), executes it via
        opt_einsum, and caches the result.

        Args:
            nodes:         List of node IDs to contract. None = all nodes.
            output_labels: Explicit output leg ordering by label.
            optimize:      opt_einsum optimizer.
            cache:         Whether to use/populate the cache.

        Returns:
            Contracted Tensor with all open/free legs remaining.
        """
        if nodes is None:
            nodes = list(self._tensors.keys())

        cache_key = (tuple(nodes), tuple(output_labels or ()), optimize)
        if cache and cache_key in self._cache:
            return self._cache[cache_key]

        result = self._contract_nodes(nodes, output_labels, optimize)

        if cache:
            self._cache[cache_key] = result

        return result

    def _contract_nodes(
        self,
        nodes: list[NodeId],
        output_labels: Sequence[Label] | None,
        optimize: str,
    ) -> Tensor:
        """Build subscripts from graph connectivity and execute contraction."""
        node_set = set(nodes)

        # Legs connected within the subset must share one label so the
        # label-based subscript builder contracts them.
        relabel_map: dict[NodeId, dict[Label, Label]] = {n: {} for n in nodes}
        for u, v, data in self._graph.edges(data=True):
            if u in node_set and v in node_set:
                label_a = data.get("label_a")
                label_b = data.get("label_b")
                if label_a != label_b and label_a not in self._tensors[v].labels():
                    relabel_map[v][label_b] = label_a

        relabeled_tensors = []
        for node in nodes:
            tensor = self._tensors[node]
            if relabel_map[node]:
                tensor = tensor.relabels(relabel_map[node])
            relabeled_tensors.append(tensor)

        subscripts, auto_output_indices = _labels_to_subscripts(
            relabeled_tensors, output_labels
        )

        return contract_with_subscripts(
            relabeled_tensors, subscripts, auto_output_indices, optimize
        )

    # ------------------------------------------------------------------ #
    # Cache management                                                     #
    # ------------------------------------------------------------------ #

    def _invalidate_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------ #
    # Utility                                                              #
    # ------------------------------------------------------------------ #

    def n_nodes(self) -> int:
        """Number of nodes in the network."""
        return len(self._tensors)

    def n_edges(self) -> int:
        """Number of edges (connected leg pairs) in the network."""
        return self._graph.number_of_edges()

    def _get_index(self, node_id: NodeId, label: Label) -> TensorIndex:
        """Retrieve TensorIndex for a specific labeled leg."""
        tensor = self.get_tensor(node_id)
        for idx in tensor.indices:
            if idx.label == label:
                return idx
        raise KeyError(
            f"Label {label!r} not found on node {node_id!r}. "
            f"Available labels: {list(tensor.labels())}"
        )

    def __repr__(self) -> str:
        return (
            f"TensorNetwork(name={self.name!r}, "
            f"nodes={self.n_nodes()}, edges={self.n_edges()})"
        )


# ------------------------------------------------------------------ #
# Chain constructor                                                    #
# ------------------------------------------------------------------ #


def build_chain(tensors: Sequence[Tensor], name: str = "chain") -> TensorNetwork:
    """Build a 1D chain (MPS or MPO) as a TensorNetwork.

    Node ``i`` holds ``tensors[i]``.  Adjacent sites are connected through
    every label they share (the virtual bond ``"v{i}_{i+1}"`` of an MPS or
    ``"w{i}_{i+1}"`` of an MPO); physical legs and the two boundary legs
    remain open.

    Args:
        tensors: Site tensors ordered left to right.
        name:    Network name.

    Returns:
        TensorNetwork with virtual bonds connected.

    Raises:
        ValueError: If two neighbouring tensors share no label or a shared
            bond has mismatched dimensions.
    """
    tn = TensorNetwork(name=name)
    for i, tensor in enumerate(tensors):
        tn.add_node(i, tensor)
    for i in range(len(tensors) - 1):
        tn.connect_by_shared_label(i, i + 1)
    return tn
