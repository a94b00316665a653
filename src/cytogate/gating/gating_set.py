"""
Multi-sample gating.

A GatingSet pairs a SampleSet with one ordered gating strategy, a list of
(parent_path, gate) pairs, and realizes the strategy independently for
every sample. Samples are processed on a thread pool; a new GatingSet is
returned only after every sample tree has been rebuilt, so readers of the
previous snapshot never see partial results.
"""

import logging

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor

from cytogate.constants import DEFAULT_WORKERS
from cytogate.events.sample_set import SampleSet
from cytogate.exceptions import (
    DuplicateNodeError,
    PopulationNotFoundError,
    SchemaMismatchError,
)
from cytogate.gating.gates import Gate
from cytogate.gating.tree import (
    ROOT_PATH,
    PopulationNode,
    PopulationPath,
    SampleTree,
    format_path,
    parse_path,
)

logger = logging.getLogger(__name__)

Strategy = list[tuple[PopulationPath, Gate]]


class GatingSet:
    """
    Immutable gating state of a whole sample set.

    Attributes:
        sample_set: Source samples
        strategy: Ordered (parent_path, gate) pairs shared by every sample
        workers: Default worker count for per-sample processing

    Example:
        >>> gs = GatingSet(sample_set)
        >>> gs = gs.add_gate("/", RectangleGate(name="cells", bounds={"FSC.A": (200, 800)}))
        >>> gs.tree("sample_01").get("/cells").count
    """

    def __init__(
        self,
        sample_set: SampleSet,
        strategy: Iterable[tuple[PopulationPath, Gate]] = (),
        trees: dict[str, SampleTree] | None = None,
        workers: int | None = None,
    ):
        self._sample_set = sample_set
        self._strategy: Strategy = [(tuple(p), g) for p, g in strategy]
        self._workers = workers or DEFAULT_WORKERS

        if trees is None:
            trees = _map_samples(
                sample_set,
                lambda sid: SampleTree.from_gates(sid, sample_set[sid], self._strategy),
                self._strategy,
                self._workers,
            )
        self._trees = trees

    @classmethod
    def from_strategy(
        cls,
        sample_set: SampleSet,
        strategy: Iterable[tuple[str | Sequence[str], Gate]],
        workers: int | None = None,
    ) -> "GatingSet":
        """
        Realize a whole strategy on a sample set.

        The strategy is validated gate by gate (unknown parent, duplicate
        name) before any sample is processed. Samples lacking a channel some
        gate reads are excluded with the reason recorded in
        ``sample_set.failures``.
        """
        validated: Strategy = []
        for parent_path, gate in strategy:
            parent, sample_set = _validated_step(validated, sample_set, parent_path, gate)
            validated.append((parent, gate))
        return cls(sample_set, validated, workers=workers)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def sample_set(self) -> SampleSet:
        return self._sample_set

    @property
    def sample_ids(self) -> list[str]:
        return list(self._trees)

    @property
    def strategy(self) -> Strategy:
        return list(self._strategy)

    @property
    def workers(self) -> int:
        return self._workers

    @property
    def population_paths(self) -> list[PopulationPath]:
        """All population paths (root first, topological order)."""
        return _strategy_paths(self._strategy)

    def tree(self, sample_id: str) -> SampleTree:
        """
        Get the population tree of one sample.

        Raises:
            KeyError: If the sample is unknown
        """
        return self._trees[sample_id]

    def trees(self) -> list[SampleTree]:
        return list(self._trees.values())

    def node(self, sample_id: str, path: str | Sequence[str]) -> PopulationNode:
        return self.tree(sample_id).get(path)

    def failed_nodes(self) -> list[PopulationNode]:
        """Every FAILED node across all samples."""
        return [node for tree in self._trees.values() for node in tree.failed_nodes()]

    # ------------------------------------------------------------------
    # Edits (each returns a new GatingSet)
    # ------------------------------------------------------------------

    def add_gate(
        self,
        parent_path: str | Sequence[str],
        gate: Gate,
        workers: int | None = None,
    ) -> "GatingSet":
        """
        Add a gate under a parent population in every sample.

        Args:
            parent_path: Existing population path
            gate: Gate to add
            workers: Worker count (default: this set's ``workers``)

        Returns:
            New GatingSet; this one is unchanged

        Raises:
            PopulationNotFoundError: If the parent does not exist
            DuplicateNodeError: If the parent already has a child of that name
            SchemaMismatchError: If no sample has the channels the gate reads
        """
        parent, sample_set = _validated_step(
            self._strategy, self._sample_set, parent_path, gate
        )

        strategy = self._strategy + [(parent, gate)]
        trees = _map_samples(
            sample_set,
            lambda sid: self._trees[sid].add_gate(parent, gate),
            strategy,
            workers or self._workers,
        )
        return self._evolve(strategy, trees, sample_set)

    def recompute(self, workers: int | None = None) -> "GatingSet":
        """Rebuild every sample tree from the strategy."""
        trees = _map_samples(
            self._sample_set,
            lambda sid: self._trees[sid].recompute(),
            self._strategy,
            workers or self._workers,
        )
        return self._evolve(self._strategy, trees)

    def replace_gate(
        self,
        path: str | Sequence[str],
        gate: Gate,
        workers: int | None = None,
    ) -> "GatingSet":
        """
        Swap the gate of a population and recompute its subtree in every sample.

        Raises:
            PopulationNotFoundError: If the path does not exist
            ValueError: If the path is the root or the gate renames the node
            SchemaMismatchError: If no sample has the channels the gate reads
        """
        key = self._require_path(path)
        if not key:
            raise ValueError("The root population has no gate")
        if gate.name != key[-1]:
            raise ValueError(
                f"Replacement gate '{gate.name}' must keep the name '{key[-1]}'"
            )
        sample_set = _exclude_missing_channels(self._sample_set, gate)

        strategy = [
            (parent, gate if parent + (old.name,) == key else old)
            for parent, old in self._strategy
        ]
        trees = _map_samples(
            sample_set,
            lambda sid: self._trees[sid].replace_gate(key, gate),
            strategy,
            workers or self._workers,
        )
        return self._evolve(strategy, trees, sample_set)

    def remove_population(self, path: str | Sequence[str]) -> "GatingSet":
        """
        Remove a population and its subtree from every sample.

        Raises:
            PopulationNotFoundError: If the path does not exist
            ValueError: If the path is the root
        """
        key = self._require_path(path)
        if not key:
            raise ValueError("The root population cannot be removed")

        strategy = [
            (parent, gate)
            for parent, gate in self._strategy
            if (parent + (gate.name,))[: len(key)] != key
        ]
        trees = {
            sid: tree.remove_population(key) for sid, tree in self._trees.items()
        }
        return self._evolve(strategy, trees)

    # ------------------------------------------------------------------

    def _require_path(self, path: str | Sequence[str]) -> PopulationPath:
        key = parse_path(path)
        if key not in self.population_paths:
            raise PopulationNotFoundError(f"Population '{format_path(key)}' not found")
        return key

    def _evolve(
        self,
        strategy: Strategy,
        trees: dict[str, SampleTree],
        sample_set: SampleSet | None = None,
    ) -> "GatingSet":
        return GatingSet(
            sample_set if sample_set is not None else self._sample_set,
            strategy,
            trees=trees,
            workers=self._workers,
        )

    def __repr__(self) -> str:
        return (
            f"<GatingSet samples={len(self._trees)} "
            f"populations={len(self.population_paths)}>"
        )


def _strategy_paths(strategy: Strategy) -> list[PopulationPath]:
    return [ROOT_PATH] + [parent + (gate.name,) for parent, gate in strategy]


def _map_samples(
    sample_set: SampleSet,
    fn: Callable[[str], SampleTree],
    strategy: Strategy,
    workers: int,
) -> dict[str, SampleTree]:
    """
    Run a per-sample tree operation, isolating unexpected failures.

    A sample whose operation raises an unexpected error gets a tree with
    every non-root population FAILED; the other samples are unaffected.
    """
    sample_ids = sample_set.sample_ids

    def run(sid: str) -> SampleTree:
        try:
            return fn(sid)
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error(f"Sample '{sid}' failed during gating: {reason}")
            return SampleTree.failed_from_gates(sid, sample_set[sid], strategy, reason)

    if workers <= 1 or len(sample_ids) <= 1:
        results = [run(sid) for sid in sample_ids]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(run, sample_ids))

    return dict(zip(sample_ids, results, strict=True))


def _exclude_missing_channels(sample_set: SampleSet, gate: Gate) -> SampleSet:
    """
    Drop the samples that lack a channel the gate reads.

    Raises:
        SchemaMismatchError: If every sample lacks one
    """
    lacking = {
        sid: [ch for ch in gate.required_channels() if ch not in table]
        for sid, table in sample_set.items()
    }
    lacking = {sid: missing for sid, missing in lacking.items() if missing}
    if not lacking:
        return sample_set
    if len(lacking) == len(sample_set):
        raise SchemaMismatchError(
            f"Gate '{gate.name}' needs channel(s) "
            f"{list(gate.required_channels())} absent from every sample"
        )
    for sid, missing in lacking.items():
        reason = f"Gate '{gate.name}' needs channel(s) {missing} absent from the sample"
        logger.warning(f"Excluding sample '{sid}': {reason}")
        sample_set = sample_set.with_failure(sid, reason)
    return sample_set


def _validated_step(
    strategy: Strategy,
    sample_set: SampleSet,
    parent_path: str | Sequence[str],
    gate: Gate,
) -> tuple[PopulationPath, SampleSet]:
    parent = parse_path(parent_path)
    paths = _strategy_paths(strategy)
    if parent not in paths:
        raise PopulationNotFoundError(
            f"Parent population '{format_path(parent)}' not found"
        )
    path = parent + (gate.name,)
    if path in paths:
        raise DuplicateNodeError(
            f"Population '{format_path(path)}' already exists", path=path
        )
    return parent, _exclude_missing_channels(sample_set, gate)
