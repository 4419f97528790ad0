"""
Document summary aggregation.

Pure and deterministic: the same clauses, analyses, alerts and chunk
statuses always give the same summary (apart from the timestamp). Missing
input is reported as ``insufficient_data`` instead of raising.
"""

import logging
from typing import Optional

from .models import (
    ChunkIndexStatus,
    Clause,
    ClauseAnalysis,
    Document,
    DocumentSummary,
    RiskAlert,
    RiskLevel,
    SummaryStatus,
)

logger = logging.getLogger(__name__)

MAX_KEY_RISKS = 5


class SummaryBuilder:
    """Aggregates clause analyses and risk alerts into a document summary."""

    def build(
        self,
        document: Document,
        clauses: list[Clause],
        analyses: list[ClauseAnalysis],
        alerts: list[RiskAlert],
        chunk_statuses: Optional[list[ChunkIndexStatus]] = None,
    ) -> DocumentSummary:
        document_id = document.document_id
        if not clauses:
            return DocumentSummary(
                document_id=document_id,
                status=SummaryStatus.INSUFFICIENT_DATA,
                risk_posture=None,
                narrative="Not enough information to summarize this document: no clauses were found.",
            )

        positions = {c.clause_id: c.position for c in clauses}
        latest = {a.clause_id: a for a in analyses if a.clause_id in positions}
        alerts = [a for a in alerts if all(cid in positions for cid in a.clause_ids)]
        chunk_statuses = chunk_statuses or []

        posture = RiskLevel.highest(
            [a.risk_level for a in latest.values()] + [a.severity for a in alerts]
        )
        alert_counts = {level.value: 0 for level in RiskLevel}
        for alert in alerts:
            alert_counts[alert.severity.value] += 1

        degraded = sorted(
            (a.clause_id for a in latest.values() if a.is_degraded),
            key=lambda cid: positions[cid],
        )
        unindexed = sorted(s.chunk_id for s in chunk_statuses if not s.indexed)
        missing = [c for c in clauses if c.clause_id not in latest]

        partial = bool(missing or degraded or unindexed)
        status = SummaryStatus.PARTIAL if partial else SummaryStatus.COMPLETE

        top_risks = self._top_risks(alerts, positions)
        narrative = self._narrative(
            document, len(clauses), posture, alert_counts, top_risks,
            degraded=len(degraded), unindexed=len(unindexed), missing=len(missing),
        )

        return DocumentSummary(
            document_id=document_id,
            status=status,
            risk_posture=posture,
            narrative=narrative,
            clause_count=len(clauses),
            analyzed_count=len(latest) - len(degraded),
            alert_counts=alert_counts,
            top_risks=top_risks,
            degraded_clause_ids=degraded,
            unindexed_chunk_ids=unindexed,
        )

    @staticmethod
    def _top_risks(alerts: list[RiskAlert], positions: dict[str, int]) -> list[dict]:
        """Most severe alerts, listed in clause order."""
        def first_position(alert):
            return min(positions[cid] for cid in alert.clause_ids)

        ranked = sorted(alerts, key=lambda a: (-a.severity.rank, first_position(a), a.risk_type))
        chosen = sorted(ranked[:MAX_KEY_RISKS], key=lambda a: (first_position(a), -a.severity.rank))
        return [
            {
                "risk_type": a.risk_type,
                "severity": a.severity.value,
                "clause_positions": sorted(positions[cid] for cid in a.clause_ids),
                "description": a.description,
                "recommendation": a.recommendation,
            }
            for a in chosen
        ]

    @staticmethod
    def _narrative(
        document: Document,
        clause_count: int,
        posture: Optional[RiskLevel],
        alert_counts: dict,
        top_risks: list[dict],
        degraded: int,
        unindexed: int,
        missing: int,
    ) -> str:
        kind = document.document_type.value
        label = "document" if kind == "unknown" else f"{kind} document"
        noun = "clause" if clause_count == 1 else "clauses"
        lines = [f"This {label} has {clause_count} {noun}."]

        if posture is None:
            lines.append("No clause could be assessed for risk.")
        else:
            lines.append(f"Overall risk: {posture.value}.")

        total_alerts = sum(alert_counts.values())
        if total_alerts:
            counts = ", ".join(
                f"{alert_counts[level.value]} {level.value}"
                for level in sorted(RiskLevel, key=lambda lv: -lv.rank)
                if alert_counts[level.value]
            )
            lines.append(f"{total_alerts} risk alert{'s' if total_alerts != 1 else ''} ({counts}).")
            for risk in top_risks:
                clauses = ", ".join(str(p + 1) for p in risk["clause_positions"])
                lines.append(
                    f"- Clause {clauses}: {risk['risk_type']} ({risk['severity']}). "
                    f"{risk['description']}"
                )
        else:
            lines.append("No risk alerts were raised.")

        if degraded or missing:
            lines.append(f"{degraded + missing} clause(s) need manual review.")
        if unindexed:
            lines.append(f"{unindexed} passage(s) could not be indexed for questions.")
        return "\n".join(lines)
