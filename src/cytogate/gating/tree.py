"""
Population tree for a single sample.

The root population is every event of the sample. Each child population is
the subset of its parent's events retained by the child's gate, so a child
is always a subset of its parent.

SampleTree is an immutable snapshot: ``add_gate``, ``replace_gate``,
``remove_population`` and ``recompute`` return new trees. Readers holding a
tree never observe a partially recomputed state.
"""

import logging

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from cytogate.constants import PATH_SEPARATOR, ROOT_NAME, NodeStatus
from cytogate.events.table import EventTable
from cytogate.exceptions import (
    DuplicateNodeError,
    GateFitError,
    PopulationNotFoundError,
    SchemaMismatchError,
)
from cytogate.gating.gates import Gate

logger = logging.getLogger(__name__)

PopulationPath = tuple[str, ...]
ROOT_PATH: PopulationPath = ()


def parse_path(path: str | Sequence[str]) -> PopulationPath:
    """
    Normalize a population path.

    Accepts "/a/b", "a/b", "/root/a/b", "/" or "root" (the root), or a
    sequence of names.

    Example:
        >>> parse_path("/lymphocytes/singlets")
        ('lymphocytes', 'singlets')
        >>> parse_path("/")
        ()
    """
    if isinstance(path, str):
        parts = [p for p in path.strip().split(PATH_SEPARATOR) if p]
    else:
        parts = [str(p) for p in path]
    if parts and parts[0] == ROOT_NAME:
        parts = parts[1:]
    return tuple(parts)


def format_path(path: Sequence[str]) -> str:
    """Render a population path as "/a/b" ("/" for the root)."""
    return PATH_SEPARATOR + PATH_SEPARATOR.join(path)


def _readonly(mask: np.ndarray) -> np.ndarray:
    mask = np.asarray(mask, dtype=bool)
    mask.setflags(write=False)
    return mask


@dataclass(frozen=True, eq=False)
class PopulationNode:
    """
    One realized population of one sample.

    Attributes:
        sample_id: Owning sample
        path: Names from the root (root is ``()``)
        gate: Gate that defines the population (None for the root)
        mask: Membership over the parent's retained events
        event_mask: Membership over all events of the sample
        status: OK or FAILED
        error: Failure reason when FAILED
        shape: Realized deterministic gate, for fitted gates
    """

    sample_id: str
    path: PopulationPath
    gate: Gate | None
    mask: np.ndarray
    event_mask: np.ndarray
    status: NodeStatus = NodeStatus.OK
    error: str | None = None
    shape: Gate | None = None

    @property
    def name(self) -> str:
        return self.path[-1] if self.path else ROOT_NAME

    @property
    def parent_path(self) -> PopulationPath | None:
        return self.path[:-1] if self.path else None

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def is_root(self) -> bool:
        return not self.path

    @property
    def failed(self) -> bool:
        return self.status == NodeStatus.FAILED

    @property
    def count(self) -> int | None:
        """Number of retained events, None when the node failed."""
        if self.failed:
            return None
        return int(np.count_nonzero(self.event_mask))

    def __repr__(self) -> str:
        return (
            f"<PopulationNode {self.sample_id}:{format_path(self.path)} "
            f"status={self.status.value} count={self.count}>"
        )


def _root_node(sample_id: str, events: EventTable) -> PopulationNode:
    everything = _readonly(np.ones(events.n_events, dtype=bool))
    return PopulationNode(
        sample_id=sample_id,
        path=ROOT_PATH,
        gate=None,
        mask=everything,
        event_mask=everything,
    )


def _failed_node(
    sample_id: str,
    path: PopulationPath,
    gate: Gate,
    parent: PopulationNode | None,
    n_events: int,
    reason: str,
) -> PopulationNode:
    parent_size = 0 if parent is None or parent.failed else parent.count or 0
    return PopulationNode(
        sample_id=sample_id,
        path=path,
        gate=gate,
        mask=_readonly(np.zeros(parent_size, dtype=bool)),
        event_mask=_readonly(np.zeros(n_events, dtype=bool)),
        status=NodeStatus.FAILED,
        error=reason,
    )


class SampleTree:
    """
    Immutable population hierarchy of one sample.

    Nodes are kept in topological order (every parent precedes its
    children, siblings in insertion order).

    Example:
        >>> tree = SampleTree.create("s1", events)
        >>> tree = tree.add_gate("/", RectangleGate(name="cells", bounds={...}))
        >>> tree.get("/cells").count
    """

    def __init__(
        self,
        sample_id: str,
        events: EventTable,
        nodes: Mapping[PopulationPath, PopulationNode],
    ):
        self._sample_id = sample_id
        self._events = events
        self._nodes: dict[PopulationPath, PopulationNode] = dict(nodes)

    @classmethod
    def create(cls, sample_id: str, events: EventTable) -> "SampleTree":
        """Create a tree holding only the root population."""
        return cls(sample_id, events, {ROOT_PATH: _root_node(sample_id, events)})

    @classmethod
    def from_gates(
        cls,
        sample_id: str,
        events: EventTable,
        gates: Sequence[tuple[PopulationPath, Gate]],
    ) -> "SampleTree":
        """Build a tree from (parent_path, gate) pairs in topological order."""
        tree = cls.create(sample_id, events)
        for parent_path, gate in gates:
            tree = tree.add_gate(parent_path, gate)
        return tree

    @classmethod
    def failed_from_gates(
        cls,
        sample_id: str,
        events: EventTable,
        gates: Sequence[tuple[PopulationPath, Gate]],
        reason: str,
    ) -> "SampleTree":
        """Build a tree whose every non-root population is FAILED."""
        nodes = {ROOT_PATH: _root_node(sample_id, events)}
        for parent_path, gate in gates:
            path = tuple(parent_path) + (gate.name,)
            nodes[path] = _failed_node(
                sample_id, path, gate, None, events.n_events, reason
            )
        return cls(sample_id, events, nodes)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def sample_id(self) -> str:
        return self._sample_id

    @property
    def events(self) -> EventTable:
        """All events of the sample."""
        return self._events

    @property
    def paths(self) -> list[PopulationPath]:
        return list(self._nodes)

    @property
    def gates(self) -> list[tuple[PopulationPath, Gate]]:
        """The tree's gates as (parent_path, gate) pairs, in topological order."""
        return [
            (node.path[:-1], node.gate)
            for node in self._nodes.values()
            if node.gate is not None
        ]

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, tuple, list)):
            return False
        return parse_path(path) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, path: str | Sequence[str]) -> PopulationNode:
        """
        Get a population node.

        Raises:
            PopulationNotFoundError: If the path does not exist
        """
        key = parse_path(path)
        try:
            return self._nodes[key]
        except KeyError:
            raise PopulationNotFoundError(
                f"Population '{format_path(key)}' not found in sample '{self._sample_id}'"
            ) from None

    def nodes(self) -> Iterator[PopulationNode]:
        """All nodes in topological order."""
        return iter(self._nodes.values())

    def children(self, path: str | Sequence[str] = ROOT_PATH) -> list[PopulationNode]:
        key = self.get(path).path
        return [n for n in self._nodes.values() if n.path[:-1] == key and n.path]

    def descendants(self, path: str | Sequence[str] = ROOT_PATH) -> list[PopulationNode]:
        key = self.get(path).path
        return [
            n
            for n in self._nodes.values()
            if len(n.path) > len(key) and n.path[: len(key)] == key
        ]

    def failed_nodes(self) -> list[PopulationNode]:
        return [n for n in self._nodes.values() if n.failed]

    def events_for(self, path: str | Sequence[str]) -> EventTable:
        """
        Events retained by a population.

        Raises:
            PopulationNotFoundError: If the path does not exist
            GateFitError: If the population failed to realize
        """
        node = self.get(path)
        if node.failed:
            raise GateFitError(
                f"Population '{format_path(node.path)}' failed: {node.error}",
                gate_name=node.name,
                sample_id=self._sample_id,
            )
        return self._events.subset(node.event_mask)

    # ------------------------------------------------------------------
    # Edits (each returns a new tree)
    # ------------------------------------------------------------------

    def add_gate(self, parent_path: str | Sequence[str], gate: Gate) -> "SampleTree":
        """
        Add a child population under a parent.

        Args:
            parent_path: Existing population path
            gate: Gate applied to the parent's retained events

        Returns:
            New tree; this tree is unchanged

        Raises:
            PopulationNotFoundError: If the parent does not exist
            DuplicateNodeError: If the parent already has a child of that name
            SchemaMismatchError: If the sample lacks a channel the gate reads
        """
        parent = self.get(parent_path)
        path = parent.path + (gate.name,)
        if path in self._nodes:
            raise DuplicateNodeError(
                f"Population '{format_path(path)}' already exists", path=path
            )
        self._check_channels(gate)

        nodes = dict(self._nodes)
        nodes[path] = self._realize(parent, path, gate)
        return SampleTree(self._sample_id, self._events, nodes)

    def recompute(self) -> "SampleTree":
        """Re-apply every gate in topological order."""
        return self._rebuild(self._gate_map(), reuse=lambda path: False)

    def replace_gate(self, path: str | Sequence[str], gate: Gate) -> "SampleTree":
        """
        Swap the gate of a population and recompute it and its descendants.

        The new gate must keep the population name.

        Raises:
            PopulationNotFoundError: If the path does not exist
            ValueError: If the path is the root or the gate renames the node
        """
        key = self.get(path).path
        if not key:
            raise ValueError("The root population has no gate")
        if gate.name != key[-1]:
            raise ValueError(
                f"Replacement gate '{gate.name}' must keep the name '{key[-1]}'"
            )
        self._check_channels(gate)

        gates = self._gate_map()
        gates[key] = gate
        return self._rebuild(gates, reuse=lambda p: p[: len(key)] != key)

    def remove_population(self, path: str | Sequence[str]) -> "SampleTree":
        """
        Remove a population and its whole subtree.

        Raises:
            PopulationNotFoundError: If the path does not exist
            ValueError: If the path is the root
        """
        key = self.get(path).path
        if not key:
            raise ValueError("The root population cannot be removed")
        nodes = {p: n for p, n in self._nodes.items() if p[: len(key)] != key}
        return SampleTree(self._sample_id, self._events, nodes)

    def mark_failed(self, reason: str) -> "SampleTree":
        """Return a tree with every non-root population FAILED."""
        return SampleTree.failed_from_gates(
            self._sample_id, self._events, self.gates, reason
        )

    # ------------------------------------------------------------------

    def _check_channels(self, gate: Gate) -> None:
        missing = [ch for ch in gate.required_channels() if ch not in self._events]
        if missing:
            raise SchemaMismatchError(
                f"Gate '{gate.name}' needs channel(s) {missing} absent from "
                f"sample '{self._sample_id}'"
            )

    def _gate_map(self) -> dict[PopulationPath, Gate | None]:
        return {path: node.gate for path, node in self._nodes.items()}

    def _rebuild(
        self,
        gates: Mapping[PopulationPath, Gate | None],
        reuse: Callable[[PopulationPath], bool],
    ) -> "SampleTree":
        nodes: dict[PopulationPath, PopulationNode] = {}
        for path, gate in gates.items():
            if reuse(path) and path in self._nodes:
                nodes[path] = self._nodes[path]
            elif not path:
                nodes[path] = _root_node(self._sample_id, self._events)
            else:
                nodes[path] = self._realize(nodes[path[:-1]], path, gate)
        return SampleTree(self._sample_id, self._events, nodes)

    def _realize(
        self, parent: PopulationNode, path: PopulationPath, gate: Gate
    ) -> PopulationNode:
        n_events = self._events.n_events

        if parent.failed:
            return _failed_node(
                self._sample_id,
                path,
                gate,
                parent,
                n_events,
                f"Ancestor '{format_path(parent.path)}' failed",
            )

        parent_events = self._events.subset(parent.event_mask)
        shape = None
        try:
            if gate.fitted:
                shape = gate.fit(parent_events)
                mask = shape.apply(parent_events)
            else:
                mask = gate.apply(parent_events)
        except GateFitError as e:
            logger.warning(
                f"Sample '{self._sample_id}': gate '{format_path(path)}' failed: {e}"
            )
            return _failed_node(self._sample_id, path, gate, parent, n_events, str(e))

        event_mask = parent.event_mask.copy()
        event_mask[parent.event_mask] = mask
        return PopulationNode(
            sample_id=self._sample_id,
            path=path,
            gate=gate,
            mask=_readonly(mask),
            event_mask=_readonly(event_mask),
            shape=shape,
        )

    def __repr__(self) -> str:
        return f"<SampleTree sample={self._sample_id!r} populations={len(self._nodes)}>"
