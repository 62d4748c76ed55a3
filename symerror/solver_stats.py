"""
Solver query statistics.

Counts queries by outcome the way the error solver issues them, and keeps
a per-query record for reporting.
"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class QueryRecord:
    """Outcome of a single solver query."""
    kind: str  # 'truth', 'initial_values' or 'optimal_values'
    status: str  # SolverRunStatus name
    has_solution: Optional[bool] = None
    time_ms: Optional[float] = None


class SolverStats:
    """Collects query counters across one run."""

    def __init__(self):
        self.queries = 0
        self.query_counterexamples = 0
        self.queries_valid = 0
        self.queries_invalid = 0
        self.query_time = 0.0
        self.results: List[QueryRecord] = []

    def record_query(self, with_objects: bool):
        self.queries += 1
        if with_objects:
            self.query_counterexamples += 1

    def record_success(self, has_solution: bool):
        if has_solution:
            self.queries_invalid += 1
        else:
            self.queries_valid += 1

    def add(self, kind: str, status: str, has_solution: Optional[bool] = None,
            time_ms: Optional[float] = None):
        """Record a finished query."""
        self.results.append(QueryRecord(kind=kind, status=status,
                                        has_solution=has_solution,
                                        time_ms=time_ms))
        if time_ms is not None:
            self.query_time += time_ms / 1000.0

    def summary_table(self) -> str:
        """Generate a markdown table of query outcomes."""
        if not self.results:
            return "No solver queries recorded.\n"

        headers = ["#", "Query", "Status", "Solution", "Time (ms)"]
        data_rows = []
        for i, r in enumerate(self.results):
            solution = "-" if r.has_solution is None else ("yes" if r.has_solution else "no")
            time_ms = "-" if r.time_ms is None else f"{r.time_ms:.1f}"
            data_rows.append([str(i), r.kind, r.status, solution, time_ms])

        col_widths = [len(h) for h in headers]
        for row in data_rows:
            for i, cell in enumerate(row):
                col_widths[i] = max(col_widths[i], len(cell))

        def format_row(cells):
            return "| " + " | ".join(cell.ljust(col_widths[i]) for i, cell in enumerate(cells)) + " |"

        header_line = format_row(headers)
        separator = "|" + "|".join("-" * (w + 2) for w in col_widths) + "|"
        row_lines = [format_row(row) for row in data_rows]

        table = "\n".join([header_line, separator] + row_lines)
        summary = (f"- queries: {self.queries} "
                   f"(counterexamples: {self.query_counterexamples})\n"
                   f"- valid: {self.queries_valid}, invalid: {self.queries_invalid}\n"
                   f"- solver time: {self.query_time:.3f}s")
        return f"## Solver Statistics\n\n{table}\n\n{summary}"
