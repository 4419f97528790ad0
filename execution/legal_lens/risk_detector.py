"""
Risk Detector for Legal Lens

Two stages:

1. Deterministic pattern matching against the document type's risk table
   plus common patterns. No external calls, cannot fail.
2. A classification call, only for clauses that stage 1 marked borderline
   or that the clause analyzer rated high risk. It may raise the severity of
   an existing risk or surface a new risk type. It never lowers a severity.

Alerts are merged per (clause set, risk type) keeping the highest severity,
and alerts that reference unknown clauses are dropped.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import UpstreamError
from .llm import ClassificationService
from .models import Clause, ClauseAnalysis, DocumentType, RiskAlert, RiskLevel, stable_id
from .patterns import RISK_TYPE_INFO, risk_patterns_for, risk_taxonomy_for
from .upstream import UpstreamCaller

logger = logging.getLogger(__name__)


@dataclass
class RiskFinding:
    """One risk for one clause, before deduplication."""
    clause_id: str
    risk_type: str
    severity: RiskLevel
    description: str
    recommendation: str
    source: str
    borderline: bool = False


class RiskDetector:
    """Pattern-first risk detection with classifier escalation."""

    def __init__(self, classifier: ClassificationService, upstream: UpstreamCaller):
        self._classifier = classifier
        self._upstream = upstream

    # =========================================================================
    # Stage 1: patterns
    # =========================================================================

    def scan(self, clause: Clause, document_type: DocumentType) -> list[RiskFinding]:
        """Match one clause against the pattern table."""
        findings: dict[str, RiskFinding] = {}
        for pattern in risk_patterns_for(document_type):
            if not pattern.compiled.search(clause.text):
                continue
            finding = RiskFinding(
                clause_id=clause.clause_id,
                risk_type=pattern.risk_type,
                severity=pattern.severity,
                description=pattern.description,
                recommendation=pattern.recommendation,
                source="pattern",
                borderline=pattern.borderline,
            )
            existing = findings.get(pattern.risk_type)
            if existing is None:
                findings[pattern.risk_type] = finding
            elif finding.severity.rank > existing.severity.rank:
                finding.borderline = finding.borderline and existing.borderline
                findings[pattern.risk_type] = finding
            else:
                existing.borderline = existing.borderline and finding.borderline
        return list(findings.values())

    # =========================================================================
    # Stage 2: classification
    # =========================================================================

    def classify(self, clause: Clause, document_type: DocumentType) -> Optional[RiskFinding]:
        """
        Ask the classifier for the clause's main risk.

        Returns:
            A finding, or None if the classifier answered "none" or failed
        """
        taxonomy = risk_taxonomy_for(document_type)
        try:
            label = self._upstream.call(
                "classification",
                self._classifier.classify,
                clause.text,
                taxonomy,
                document_id=clause.document_id,
            )
        except UpstreamError as e:
            logger.warning(
                f"Risk classification failed for clause {clause.position} of "
                f"{clause.document_id}, keeping pattern results: {e}"
            )
            return None

        if label == "none" or ":" not in label:
            return None
        risk_type, _, level = label.partition(":")
        severity = RiskLevel.parse(level)
        if severity is None:
            return None
        description, recommendation = RISK_TYPE_INFO.get(
            risk_type, ("The clause carries a risk for you.", "Review this clause carefully.")
        )
        return RiskFinding(
            clause_id=clause.clause_id,
            risk_type=risk_type,
            severity=severity,
            description=description,
            recommendation=recommendation,
            source="classifier",
        )

    @staticmethod
    def needs_classification(
        findings: list[RiskFinding], analysis: Optional[ClauseAnalysis]
    ) -> bool:
        if any(f.borderline for f in findings):
            return True
        return analysis is not None and analysis.risk_level == RiskLevel.HIGH

    # =========================================================================
    # Combined
    # =========================================================================

    def detect(
        self,
        clauses: list[Clause],
        document_type: DocumentType,
        analyses: Optional[dict[str, ClauseAnalysis]] = None,
        executor=None,
    ) -> list[RiskAlert]:
        """
        Run both stages over all clauses of a document.

        Args:
            clauses: Clauses of one document
            document_type: Selects the pattern table and classifier labels
            analyses: Latest analysis per clause id, used to pick stage 2 clauses
            executor: Optional executor to run classification calls in parallel

        Returns:
            Deduplicated alerts in clause order
        """
        analyses = analyses or {}
        ordered = sorted(clauses, key=lambda c: c.position)
        findings = {c.clause_id: self.scan(c, document_type) for c in ordered}

        escalate = [
            c for c in ordered
            if self.needs_classification(findings[c.clause_id], analyses.get(c.clause_id))
        ]
        if escalate:
            if executor is not None:
                classified = list(executor.map(lambda c: self.classify(c, document_type), escalate))
            else:
                classified = [self.classify(c, document_type) for c in escalate]
            for clause, finding in zip(escalate, classified):
                if finding is not None:
                    findings[clause.clause_id].append(finding)

        document_id = ordered[0].document_id if ordered else ""
        alerts = [
            self._to_alert(document_id, finding)
            for clause in ordered
            for finding in findings[clause.clause_id]
        ]
        return deduplicate_alerts(alerts, {c.clause_id: c.position for c in ordered})

    @staticmethod
    def _to_alert(document_id: str, finding: RiskFinding) -> RiskAlert:
        return RiskAlert(
            alert_id=stable_id(document_id, "alert", finding.clause_id, finding.risk_type),
            document_id=document_id,
            clause_ids=[finding.clause_id],
            risk_type=finding.risk_type,
            severity=finding.severity,
            description=finding.description,
            recommendation=finding.recommendation,
            source=finding.source,
        )


def deduplicate_alerts(alerts: list[RiskAlert], clause_positions: dict[str, int]) -> list[RiskAlert]:
    """
    Merge alerts sharing (clause set, risk type), keeping the highest severity.

    Alerts referencing no clause or an unknown clause are dropped.
    """
    merged: dict[tuple[frozenset, str], RiskAlert] = {}
    for alert in alerts:
        if not alert.clause_ids or any(cid not in clause_positions for cid in alert.clause_ids):
            logger.warning(f"Dropping alert {alert.risk_type} with unknown clause ids {alert.clause_ids}")
            continue
        key = alert.dedup_key
        existing = merged.get(key)
        if existing is None:
            merged[key] = alert
            continue
        sources = sorted(set(existing.source.split("+")) | set(alert.source.split("+")))
        winner = alert if alert.severity.rank > existing.severity.rank else existing
        merged[key] = RiskAlert(
            alert_id=existing.alert_id,
            document_id=existing.document_id,
            clause_ids=sorted(existing.clause_ids, key=lambda cid: clause_positions[cid]),
            risk_type=existing.risk_type,
            severity=winner.severity,
            description=existing.description,
            recommendation=existing.recommendation,
            source="+".join(sorted(sources, key=lambda s: s != "pattern")),
        )

    return sorted(
        merged.values(),
        key=lambda a: (
            min(clause_positions[cid] for cid in a.clause_ids),
            -a.severity.rank,
            a.risk_type,
        ),
    )
