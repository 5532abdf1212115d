"""Priorisation des rapports par rareté du canal.

Les rapports visant des canaux peu fournis passent en premier (priorité basse = plus urgent):

- canal vide: 0;
- canal de certification: `count // 2`;
- autre canal: `count`;
- item ou canal introuvable: 100.

Le tri est stable: à priorité égale l'ordre de récupération est conservé.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence

import structlog

from intake.core.constants import UNRESOLVED_REPORT_PRIORITY
from intake.domain.models import FeedbackReport
from intake.domain.report_parsing import extract_item_id

log = structlog.get_logger(__name__).bind(component="prioritization")


def channel_priority(
    channel: str | None,
    counts: Mapping[str, int],
    certification_channels: Collection[str] = (),
) -> int:
    """Priorité d'un canal selon son nombre d'items."""
    if channel is None:
        return UNRESOLVED_REPORT_PRIORITY
    count = counts.get(channel, 0)
    if count == 0:
        return 0
    if channel in certification_channels:
        return count // 2
    return count


def prioritize_reports(
    reports: Sequence[FeedbackReport],
    channel_counts: Callable[[], Mapping[str, int]],
    channel_of: Callable[[str], str | None],
    certification_channels: Collection[str] = (),
) -> list[FeedbackReport]:
    """Trie les rapports par priorité croissante (tri stable).

    Args:
        reports: Rapports dans l'ordre de récupération.
        channel_counts: Fournit le nombre d'items par canal.
        channel_of: Résout le canal d'un item (`None` si inconnu).
        certification_channels: Canaux de certification.

    Returns:
        list[FeedbackReport]: Rapports triés; ordre d'origine si les comptages sont indisponibles.
    """
    if len(reports) <= 1:
        return list(reports)
    try:
        counts = channel_counts()
    except Exception as exc:
        log.warning("channel_counts_unavailable", error=str(exc))
        return list(reports)

    def _priority(report: FeedbackReport) -> int:
        item_id = extract_item_id(report.body)
        if not item_id:
            return UNRESOLVED_REPORT_PRIORITY
        try:
            channel = channel_of(item_id)
        except Exception as exc:
            log.warning("channel_lookup_failed", report_id=report.id, error=str(exc))
            return UNRESOLVED_REPORT_PRIORITY
        return channel_priority(channel, counts, certification_channels)

    return sorted(reports, key=_priority)
