"""Tracker de rapports en mémoire (dev/tests)."""

from __future__ import annotations

from dataclasses import dataclass, field

from intake.domain.errors import TrackerError
from intake.domain.models import FeedbackReport
from intake.infra.tracker.base import ReportTracker


@dataclass
class _TrackedReport:
    report: FeedbackReport
    open: bool = True
    comments: list[str] = field(default_factory=list)


class InMemoryTracker(ReportTracker):
    """Stocke les rapports, commentaires et états dans des dicts locaux."""

    def __init__(self, reports: list[FeedbackReport] | None = None) -> None:
        """Initialise le tracker, éventuellement pré-rempli (ordre conservé)."""
        self._db: dict[str, _TrackedReport] = {}
        for r in reports or []:
            self.add_report(r)

    def add_report(self, report: FeedbackReport) -> None:
        """Dépose un nouveau rapport ouvert."""
        self._db[report.id] = _TrackedReport(report=report.model_copy(deep=True))

    def _get(self, report_id: str) -> _TrackedReport:
        tracked = self._db.get(report_id)
        if tracked is None:
            raise TrackerError(f"report {report_id} not found")
        return tracked

    def list_open_reports(self, label: str, limit: int) -> list[FeedbackReport]:
        matching = [
            t.report.model_copy(deep=True)
            for t in self._db.values()
            if t.open and label in t.report.labels
        ]
        return matching[: max(0, limit)]

    def get_report(self, report_id: str) -> FeedbackReport | None:
        tracked = self._db.get(report_id)
        return tracked.report.model_copy(deep=True) if tracked else None

    def add_label(self, report_id: str, label: str) -> None:
        report = self._get(report_id).report
        if label not in report.labels:
            report.labels.append(label)

    def post_comment(self, report_id: str, text: str) -> None:
        self._get(report_id).comments.append(text)

    def close_issue(self, report_id: str, labels: list[str]) -> None:
        tracked = self._get(report_id)
        tracked.open = False
        tracked.report.labels = list(labels)

    def comments(self, report_id: str) -> list[str]:
        """Commentaires publiés sur un rapport."""
        return list(self._get(report_id).comments)

    def is_open(self, report_id: str) -> bool:
        """Vrai si le rapport est encore ouvert."""
        return self._get(report_id).open
