"""Results database."""

from cytogate.database.models import AnalysisRun, Base, PopulationStatistic
from cytogate.database.store import ResultsStore

__all__ = ["AnalysisRun", "Base", "PopulationStatistic", "ResultsStore"]
