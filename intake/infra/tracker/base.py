"""Interface du tracker de rapports (issues) consommé par le processeur de feedback."""

from __future__ import annotations

from abc import ABC, abstractmethod

from intake.domain.models import FeedbackReport


class ReportTracker(ABC):
    """Interface abstraite d'un tracker de rapports."""

    @abstractmethod
    def list_open_reports(self, label: str, limit: int) -> list[FeedbackReport]:
        """Rapports ouverts portant `label`, au plus `limit`."""
        raise NotImplementedError

    @abstractmethod
    def get_report(self, report_id: str) -> FeedbackReport | None:
        """Rapport par identifiant, ou None."""
        raise NotImplementedError

    @abstractmethod
    def add_label(self, report_id: str, label: str) -> None:
        """Ajoute un label à un rapport."""
        raise NotImplementedError

    @abstractmethod
    def post_comment(self, report_id: str, text: str) -> None:
        """Publie un commentaire sur un rapport."""
        raise NotImplementedError

    @abstractmethod
    def close_issue(self, report_id: str, labels: list[str]) -> None:
        """Ferme un rapport en remplaçant ses labels."""
        raise NotImplementedError
