"""
Execution plan hints

Scans EXPLAIN / EXPLAIN ANALYZE text output for common problem operators and
turns the worst finding into an improvement suggestion for the drill-down.

Supported plan format:
- PostgreSQL text plans ("Seq Scan on ...", "Sort Method: external merge", ...)
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dbpulse.core.constants import Severity, SuggestionPriority
from dbpulse.models.query_metrics_models import Suggestion

_SEQ_SCAN_RE = re.compile(r"Seq Scan on (?P<table>[\w.\"]+)", re.IGNORECASE)
_FILTER_COLUMN_RE = re.compile(r"Filter:\s*\(+\s*\"?(?P<column>[A-Za-z_][\w]*)\"?\s*(?:=|<|>|~~|IS\b|IN\b)", re.IGNORECASE)
_EXTERNAL_SORT_RE = re.compile(r"Sort Method:\s*external", re.IGNORECASE)
_HASH_BATCHES_RE = re.compile(r"Batches:\s*(?P<batches>\d+)", re.IGNORECASE)
_ROWS_REMOVED_RE = re.compile(r"Rows Removed by Filter:\s*(?P<rows>\d+)", re.IGNORECASE)
_NESTED_LOOP_RE = re.compile(r"Nested Loop", re.IGNORECASE)

ROWS_REMOVED_THRESHOLD = 10_000


@dataclass
class PlanWarning:
    """One finding in an execution plan"""
    warning_type: str
    message: str
    severity: str = "warning"  # warning, info
    code: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


def _index_statement(table: str, column: Optional[str]) -> str:
    bare_table = table.replace('"', '').split('.')[-1]
    if column:
        return f"CREATE INDEX idx_{bare_table}_{column} ON {table} ({column});"
    return f"-- identify the filtered column(s) of {table} and add an index"


def collect_plan_warnings(plan_text: Optional[str]) -> List[PlanWarning]:
    """Collect plan-level warnings from EXPLAIN text"""
    if not plan_text:
        return []

    warnings: List[PlanWarning] = []

    for match in _SEQ_SCAN_RE.finditer(plan_text):
        table = match.group("table")
        tail = plan_text[match.end():]
        next_node = tail.find("->")
        node_text = tail if next_node < 0 else tail[:next_node]
        column_match = _FILTER_COLUMN_RE.search(node_text)
        removed_match = _ROWS_REMOVED_RE.search(node_text)
        rows_removed = int(removed_match.group("rows")) if removed_match else 0
        column = column_match.group("column") if column_match else None
        warnings.append(PlanWarning(
            warning_type="SeqScan",
            message=f"Sequential scan on {table} - consider an index on the filtered column",
            severity="warning" if column or rows_removed >= ROWS_REMOVED_THRESHOLD else "info",
            code=_index_statement(table, column),
            details={"table": table, "column": column, "rows_removed": rows_removed},
        ))

    if _EXTERNAL_SORT_RE.search(plan_text):
        warnings.append(PlanWarning(
            warning_type="ExternalSort",
            message="Sort spilled to disk - consider raising work_mem for this query",
            severity="warning",
            code="SET work_mem = '64MB';",
        ))

    batches = [int(m.group("batches")) for m in _HASH_BATCHES_RE.finditer(plan_text)]
    if any(b > 1 for b in batches):
        warnings.append(PlanWarning(
            warning_type="HashBatches",
            message="Hash table split into multiple batches - work_mem is too small",
            severity="warning",
            code="SET work_mem = '64MB';",
            details={"batches": max(batches)},
        ))

    if _NESTED_LOOP_RE.search(plan_text) and _SEQ_SCAN_RE.search(plan_text):
        warnings.append(PlanWarning(
            warning_type="NestedLoopScan",
            message="Nested loop over a sequential scan - check join column indexes",
            severity="info",
        ))

    return warnings


def suggest_from_plan(plan_text: Optional[str], severity: Severity) -> Optional[Suggestion]:
    """
    Derive a single suggestion from the plan and the latency severity

    A warning on a MEDIUM/HIGH query is REQUIRED, otherwise RECOMMENDED.
    A slow query with a clean plan gets an INFO note.
    """
    warnings = collect_plan_warnings(plan_text)
    actionable = [w for w in warnings if w.severity == "warning"] or warnings
    if actionable:
        top = actionable[0]
        priority = (
            SuggestionPriority.REQUIRED
            if severity in (Severity.MEDIUM, Severity.HIGH) and top.severity == "warning"
            else SuggestionPriority.RECOMMENDED
        )
        return Suggestion(priority=priority, description=top.message, code=top.code)

    if severity == Severity.HIGH:
        return Suggestion(
            priority=SuggestionPriority.INFO,
            description="Execution time is high but the plan shows no obvious problem operator",
        )
    return None
