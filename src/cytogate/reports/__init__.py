"""Statistics report export."""

from cytogate.reports.writer import population_table, records_to_rows, write_report

__all__ = ["population_table", "records_to_rows", "write_report"]
