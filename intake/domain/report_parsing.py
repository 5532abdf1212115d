"""Extraction des champs structurés d'un rapport de feedback.

Format attendu dans le corps du rapport::

    **Question ID:** `q-123`

    ### Details
    Texte libre de l'utilisateur
    ---

Le type d'action vient des labels (`feedback:rewrite`, `feedback:disable`; `disable` l'emporte),
`improve` par défaut. Pour les rapports externes, les labels sont dérivés des marqueurs de titre
`[IMPROVE]`, `[REWRITE]`, `[DISABLE]`.
"""

from __future__ import annotations

import re

from intake.core.constants import FEEDBACK_LABEL_PREFIX, TITLE_KIND_MARKERS
from intake.domain.models import FeedbackKind, FeedbackReport, ParsedReport

_ITEM_ID_RE = re.compile(r"\*\*Question ID:\*\*\s*`([^`]+)`")
_DETAILS_RE = re.compile(r"### Details\s*\n(.*?)(?:\n---|\Z)", re.S)


class ReportParseError(ValueError):
    """Le corps du rapport ne permet pas d'identifier l'item visé."""


def extract_item_id(body: str | None) -> str | None:
    """Retourne l'id d'item référencé par le rapport, ou `None`."""
    match = _ITEM_ID_RE.search(body or "")
    return match.group(1).strip() if match else None


def resolve_kind(labels: list[str]) -> FeedbackKind:
    """Type d'action déduit des labels: `disable` > `rewrite` > `improve`."""
    if f"{FEEDBACK_LABEL_PREFIX}disable" in labels:
        return "disable"
    if f"{FEEDBACK_LABEL_PREFIX}rewrite" in labels:
        return "rewrite"
    return "improve"


def extract_note(body: str | None) -> str | None:
    """Texte de la section `### Details`, jusqu'au séparateur `---` ou la fin."""
    match = _DETAILS_RE.search(body or "")
    if not match:
        return None
    return match.group(1).strip() or None


def parse_report(report: FeedbackReport) -> ParsedReport:
    """Analyse un rapport.

    Raises:
        ReportParseError: si aucun id d'item n'est présent.
    """
    item_id = extract_item_id(report.body)
    if not item_id:
        raise ReportParseError("Could not parse question ID from report body")
    return ParsedReport(
        report_id=report.id,
        item_id=item_id,
        kind=resolve_kind(report.labels),
        note=extract_note(report.body),
    )


def labels_from_title(title: str, processor_label: str) -> list[str]:
    """Labels d'un rapport externe: label du processeur plus les types marqués dans le titre."""
    labels = [processor_label]
    for marker, kind in TITLE_KIND_MARKERS.items():
        if marker in title:
            labels.append(f"{FEEDBACK_LABEL_PREFIX}{kind}")
    return labels
