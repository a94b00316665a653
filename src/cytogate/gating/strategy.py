"""
Gating strategy templates.

A strategy template is a TOML document describing the whole analysis of an
experiment: optional channel harmonization, compensation and scale
transforms, then the ordered list of gates. The same template is applied
to every sample.

Example:
    [harmonize]
    rename = { "FSC-A" = "FSC.A" }

    [compensation]
    source = "keywords"

    [transform]
    type = "logicle"
    channels = ["CD3", "CD4"]

    [[gate]]
    name = "cells"
    type = "rectangle"
    bounds = { "FSC.A" = [200, 800] }

    [[gate]]
    name = "singlets"
    parent = "/cells"
    type = "singlet"
    area = "FSC.A"
    height = "FSC.H"

Open rectangle bounds are written as tables: ``{ "CD3" = { min = 1000 } }``.
"""

import logging
import tomllib

from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from cytogate.events.sample_set import SampleSet, harmonize_channels
from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError, SchemaMismatchError, StrategyError
from cytogate.gating.gates import Gate
from cytogate.gating.gating_set import GatingSet
from cytogate.gating.registry import build_gate
from cytogate.gating.tree import ROOT_PATH, PopulationPath, format_path, parse_path
from cytogate.transforms.compensation import (
    SpilloverMatrix,
    compensate,
    load_spillover_csv,
    spillover_from_keywords,
)
from cytogate.transforms.scales import get_transform, transform_table

logger = logging.getLogger(__name__)


class HarmonizeSpec(BaseModel):
    """Channel reconciliation applied before anything else."""

    rename: dict[str, str] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class CompensationSpec(BaseModel):
    """Where the spillover matrix comes from."""

    source: Literal["keywords", "file"] = "keywords"
    file: str | None = Field(default=None, description="Spillover CSV path")

    @model_validator(mode="after")
    def _file_given(self) -> "CompensationSpec":
        if self.source == "file" and not self.file:
            raise ValueError("compensation.file is required when source = 'file'")
        return self


class TransformSpec(BaseModel):
    """Scale transform applied to a set of channels."""

    type: str = Field(description="Transform name (linear, asinh, logicle)")
    channels: list[str] = Field(min_length=1)
    params: dict[str, float] = Field(default_factory=dict)


class GateStep(BaseModel):
    """One gate of the strategy with its parent population."""

    model_config = ConfigDict(frozen=True)

    parent: tuple[str, ...] = ROOT_PATH
    gate: Gate


class GatingStrategy(BaseModel):
    """
    Validated gating strategy template.

    Attributes:
        steps: Gates in topological order
        harmonize: Optional channel reconciliation
        compensation: Optional spillover compensation
        transforms: Scale transforms applied after compensation
        source: File the strategy was loaded from, if any
    """

    steps: list[GateStep] = Field(default_factory=list)
    harmonize: HarmonizeSpec | None = None
    compensation: CompensationSpec | None = None
    transforms: list[TransformSpec] = Field(default_factory=list)
    source: str | None = None

    @property
    def population_paths(self) -> list[PopulationPath]:
        return [ROOT_PATH] + [step.parent + (step.gate.name,) for step in self.steps]

    def prepare(self, sample_set: SampleSet) -> SampleSet:
        """
        Harmonize, compensate and transform a sample set.

        Samples whose compensation or transform fails are excluded with the
        reason recorded in ``failures``.

        Raises:
            SchemaMismatchError: If harmonization fails for the whole set
            StrategyError: If the spillover file cannot be read
        """
        if self.harmonize is not None:
            sample_set = harmonize_channels(
                sample_set,
                rename=self.harmonize.rename,
                required=self.harmonize.required or None,
            )

        if self.compensation is not None:
            sample_set = _map_isolated(
                sample_set, self._compensator(), "compensation"
            )

        for spec in self.transforms:
            try:
                transform = get_transform(spec.type, **spec.params)
            except (TypeError, ValueError) as e:
                raise StrategyError(f"Invalid transform '{spec.type}': {e}") from e
            channels = list(spec.channels)
            sample_set = _map_isolated(
                sample_set,
                lambda table, t=transform, c=channels: transform_table(table, t, c),
                f"{spec.type} transform",
            )

        return sample_set

    def apply(self, sample_set: SampleSet, workers: int | None = None) -> GatingSet:
        """
        Prepare a sample set and realize every gate on it.

        Returns:
            GatingSet with one tree per surviving sample
        """
        prepared = self.prepare(sample_set)
        logger.info(
            f"Applying {len(self.steps)} gate(s) to {len(prepared)} sample(s)"
            + (f" from {self.source}" if self.source else "")
        )
        return GatingSet.from_strategy(
            prepared, [(step.parent, step.gate) for step in self.steps], workers=workers
        )

    def _compensator(self) -> Callable[[EventTable], EventTable]:
        spec = self.compensation
        if spec is not None and spec.source == "file":
            try:
                matrix = load_spillover_csv(spec.file)
            except FormatError as e:
                raise StrategyError(f"Cannot load spillover file: {e}") from e
            return lambda table: compensate(table, matrix)

        def from_keywords(table: EventTable) -> EventTable:
            found: SpilloverMatrix | None = spillover_from_keywords(table.keywords)
            if found is None:
                logger.warning("Sample has no spillover keyword; left uncompensated")
                return table
            return compensate(table, found)

        return from_keywords


def _map_isolated(
    sample_set: SampleSet,
    fn: Callable[[EventTable], EventTable],
    step: str,
) -> SampleSet:
    """Apply a table transformation, excluding the samples it fails on."""
    samples: dict[str, EventTable] = {}
    failures = sample_set.failures
    for sid, table in sample_set.items():
        try:
            samples[sid] = fn(table)
        except (FormatError, SchemaMismatchError) as e:
            logger.warning(f"Excluding sample '{sid}': {step} failed: {e}")
            failures[sid] = f"{step} failed: {e}"
    metadata = {sid: sample_set.metadata_for(sid) for sid in samples}
    return SampleSet(samples, metadata, failures)


def _normalize_bounds(bounds: Any) -> Any:
    """Accept [lo, hi] arrays or {min, max} tables for rectangle bounds."""
    if not isinstance(bounds, dict):
        return bounds
    normalized = {}
    for channel, value in bounds.items():
        if isinstance(value, dict):
            unknown = set(value) - {"min", "max"}
            if unknown:
                raise StrategyError(
                    f"Unknown bound key(s) {sorted(unknown)} for channel '{channel}'"
                )
            normalized[channel] = (value.get("min"), value.get("max"))
        else:
            normalized[channel] = value
    return normalized


def parse_strategy(document: dict[str, Any], source: str | None = None) -> GatingStrategy:
    """
    Build a GatingStrategy from a parsed TOML document.

    Raises:
        StrategyError: If the document is invalid
    """
    unknown = set(document) - {"gate", "harmonize", "compensation", "transform"}
    if unknown:
        raise StrategyError(f"Unknown strategy section(s): {sorted(unknown)}")

    gate_tables = document.get("gate", [])
    if not isinstance(gate_tables, list):
        raise StrategyError("'gate' must be an array of tables ([[gate]])")

    steps: list[GateStep] = []
    known_paths: set[PopulationPath] = {ROOT_PATH}

    for index, table in enumerate(gate_tables, start=1):
        if not isinstance(table, dict):
            raise StrategyError(f"Gate #{index} must be a table")
        params = dict(table)
        kind = params.pop("type", None)
        if not kind:
            raise StrategyError(f"Gate #{index} has no 'type'")
        parent = parse_path(params.pop("parent", "/"))
        if "bounds" in params:
            params["bounds"] = _normalize_bounds(params["bounds"])

        try:
            gate = build_gate(kind, **params)
        except ValueError as e:
            raise StrategyError(f"Gate #{index}: {e}") from e

        if parent not in known_paths:
            raise StrategyError(
                f"Gate '{gate.name}' refers to unknown parent '{format_path(parent)}'"
            )
        path = parent + (gate.name,)
        if path in known_paths:
            raise StrategyError(f"Population '{format_path(path)}' is defined twice")
        known_paths.add(path)
        steps.append(GateStep(parent=parent, gate=gate))

    transform_tables = document.get("transform", [])
    if isinstance(transform_tables, dict):
        transform_tables = [transform_tables]

    try:
        transforms = []
        for table in transform_tables:
            table = dict(table)
            transforms.append(
                TransformSpec(
                    type=table.pop("type", ""),
                    channels=table.pop("channels", []),
                    params=table,
                )
            )
        return GatingStrategy(
            steps=steps,
            harmonize=document.get("harmonize"),
            compensation=document.get("compensation"),
            transforms=transforms,
            source=source,
        )
    except ValidationError as e:
        raise StrategyError(f"Invalid strategy: {e}") from e


def load_strategy(path: Path | str) -> GatingStrategy:
    """
    Load a gating strategy template from a TOML file.

    A relative compensation file is resolved against the template's
    directory.

    Raises:
        StrategyError: If the file cannot be read or is invalid
    """
    path = Path(path)
    try:
        with open(path, "rb") as f:
            document = tomllib.load(f)
    except OSError as e:
        raise StrategyError(f"Cannot read strategy {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise StrategyError(f"Invalid TOML in {path.name}: {e}") from e

    strategy = parse_strategy(document, source=str(path))
    spec = strategy.compensation
    if spec is not None and spec.file and not Path(spec.file).is_absolute():
        resolved = str(path.parent / spec.file)
        strategy = strategy.model_copy(
            update={"compensation": spec.model_copy(update={"file": resolved})}
        )

    logger.debug(f"Loaded strategy {path.name}: {len(strategy.steps)} gate(s)")
    return strategy
