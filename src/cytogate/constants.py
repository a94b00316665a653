"""
Constants and defaults for cytogate.

Gate fitting defaults follow the values commonly used by openCyto/flowClust
style automated gating; transform defaults follow the Gating-ML logicle
parameters used for 18-bit instruments.
"""

from enum import Enum
from pathlib import Path

# ============================================================================
# Population Paths
# ============================================================================

ROOT_NAME = "root"
PATH_SEPARATOR = "/"


class NodeStatus(str, Enum):
    """Realization status of a population node."""

    OK = "ok"
    FAILED = "failed"


# ============================================================================
# Sample Metadata
# ============================================================================

# 96-well plate identifiers (A1..H12, optionally zero padded), delimited so
# that "Specimen_001_B07_B07_007.fcs" yields "B07"
DEFAULT_WELL_PATTERN = r"(?:^|[_\-\s.])([A-H](?:0?[1-9]|1[0-2]))(?=$|[_\-\s.])"

# Keywords (lower-case, without "$") checked for a sample name before
# falling back to the file stem
SAMPLE_NAME_KEYWORDS = ("fil", "tube name", "smno")


# ============================================================================
# Gate Fitting
# ============================================================================


class DensityGateConstants:
    """Defaults for mixture-model density gates (gating/fitted.py)."""

    N_COMPONENTS = 2
    QUANTILE = 0.95
    MIN_EVENTS = 20
    MAX_ITER = 200
    RANDOM_STATE = 0
    COVARIANCE_TYPE = "full"


class SingletGateConstants:
    """Defaults for area/height singlet discrimination (gating/fitted.py)."""

    TOLERANCE = 4.0  # band half-width in robust standard deviations
    MIN_EVENTS = 10
    MAD_TO_SIGMA = 1.4826


class QuantileGateConstants:
    """Defaults for one-dimensional quantile threshold gates."""

    QUANTILE = 0.5
    MIN_EVENTS = 1


# ============================================================================
# Transforms
# ============================================================================


class LogicleConstants:
    """Default logicle parameters (Gating-ML 2.0, 18-bit data)."""

    T = 262144.0
    W = 0.5
    M = 4.5
    A = 0.0
    NEWTON_ITERATIONS = 20
    GRID_SIZE = 4096


DEFAULT_ASINH_COFACTOR = 150.0


# ============================================================================
# Statistics & Reports
# ============================================================================

REPORT_FORMATS = ("csv", "tsv", "json")
DEFAULT_REPORT_FORMAT = "csv"

REPORT_COLUMNS = [
    "sample_id",
    "population",
    "path",
    "parent_path",
    "status",
    "count",
    "parent_count",
    "percent_of_parent",
    "percent_of_total",
]


# ============================================================================
# Paths & Runtime
# ============================================================================

DEFAULT_WORKERS = 1

DEFAULT_CONFIG_DIR = Path.home() / ".cytogate"
DEFAULT_DATABASE_PATH = str(DEFAULT_CONFIG_DIR / "results.db")

DEFAULT_LOG_DIR = DEFAULT_CONFIG_DIR / "logs"
DEFAULT_LOG_FILE = "cytogate.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5
