"""Exception hierarchy for cytogate."""

from pathlib import Path


class CytogateError(Exception):
    """Base exception for all cytogate errors."""


class FormatError(CytogateError):
    """Source data is malformed, truncated or otherwise unreadable."""

    def __init__(self, message: str, path: str | Path | None = None):
        super().__init__(message)
        self.path = str(path) if path is not None else None


class SchemaMismatchError(CytogateError):
    """Channel sets are inconsistent within a table or across a sample set."""


class GateFitError(CytogateError):
    """A fitted gate could not derive its shape from the parent events."""

    def __init__(
        self, message: str, gate_name: str | None = None, sample_id: str | None = None
    ):
        super().__init__(message)
        self.gate_name = gate_name
        self.sample_id = sample_id


class DuplicateNodeError(CytogateError):
    """A population with the same name already exists under the parent."""

    def __init__(self, message: str, path: tuple[str, ...] = ()):
        super().__init__(message)
        self.path = path


class PopulationNotFoundError(CytogateError, KeyError):
    """The requested population path does not exist in the tree."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class StrategyError(CytogateError):
    """A gating strategy template is invalid."""


class DivisionPolicyWarning(UserWarning):
    """Percent-of-parent is undefined because the parent population is empty."""
