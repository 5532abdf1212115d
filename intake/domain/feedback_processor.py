"""Processeur de feedback: machine à états explicite sur les rapports du tracker.

Étapes (`Stage`) et transitions::

    FETCH_REPORTS -> PARSE_REPORT -> FETCH_ITEM -> EXECUTE_ACTION -> PERSIST_AND_CLOSE
                          ^                                                  |
                          +--------------------------------------------------+
    PARSE_REPORT -> DONE quand tous les rapports sont traités

Chaque étape est une méthode `(state) -> (next_stage, state)` appelée par `dispatch`. Une erreur
sur un rapport (parsing, item absent, collaborateur) saute directement à `PERSIST_AND_CLOSE`: le
rapport est clos avec un commentaire d'échec et le lot continue.

Idempotence: un rapport `completed` dans le registre pendant la fenêtre de cool-down n'est jamais
repris; une revendication conditionnelle (`SET NX`) empêche deux instances de traiter le même
rapport simultanément. Les erreurs du registre sont journalisées sans interrompre le traitement.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from intake.core.constants import (
    FEEDBACK_LABEL_PREFIX,
    LABEL_COMPLETED,
    LABEL_FAILED,
    LABEL_IN_PROGRESS,
)
from intake.domain.errors import IntakeError, LedgerError
from intake.domain.models import (
    ContentItem,
    FeedbackKind,
    FeedbackReport,
    FeedbackResult,
    FeedbackRunSummary,
    ParsedReport,
)
from intake.domain.prioritization import prioritize_reports
from intake.domain.report_parsing import (
    ReportParseError,
    labels_from_title,
    parse_report,
    resolve_kind,
)
from intake.infra.content_repo import ContentRepository
from intake.infra.llm.rewriter import Rewriter
from intake.infra.monitoring.metrics import FEEDBACK_REPORTS, FEEDBACK_SKIPPED, LEDGER_ERRORS
from intake.infra.ops.ledger import FeedbackLedger
from intake.infra.tracker.base import ReportTracker

BOT_SIGNATURE = "*Processed by processor-bot*"


class Stage(enum.Enum):
    """Étapes de la machine à états."""

    FETCH_REPORTS = "fetch_reports"
    PARSE_REPORT = "parse_report"
    FETCH_ITEM = "fetch_item"
    EXECUTE_ACTION = "execute_action"
    PERSIST_AND_CLOSE = "persist_and_close"
    DONE = "done"


@dataclass
class ProcessorState:
    """État d'une exécution du processeur."""

    max_reports: int
    single_report_id: str | None = None
    external_reports: list[FeedbackReport] | None = None
    reports: list[FeedbackReport] = field(default_factory=list)
    cursor: int = 0
    fetched: int = 0
    skipped: int = 0
    results: list[FeedbackResult] = field(default_factory=list)
    run_error: str | None = None

    # rapport courant
    current: FeedbackReport | None = None
    parsed: ParsedReport | None = None
    kind: FeedbackKind | None = None
    item: ContentItem | None = None
    updated: ContentItem | None = None
    claimed: bool = False
    error: str | None = None

    @property
    def external(self) -> bool:
        """Vrai pour un lot de rapports externes (pas d'écriture vers le tracker)."""
        return self.external_reports is not None

    def reset_current(self) -> None:
        """Oublie le rapport courant avant de passer au suivant."""
        self.current = None
        self.parsed = None
        self.kind = None
        self.item = None
        self.updated = None
        self.claimed = False
        self.error = None


def external_report(raw: Mapping[str, Any], processor_label: str) -> FeedbackReport:
    """Convertit un rapport externe `{id|number, title, body, url}` en `FeedbackReport`."""
    title = str(raw.get("title") or "")
    report_id = raw.get("id", raw.get("number"))
    if report_id is None:
        raise ValueError("external report has no id")
    return FeedbackReport(
        id=str(report_id),
        title=title,
        body=str(raw.get("body") or ""),
        labels=labels_from_title(title, processor_label),
        url=raw.get("url"),
    )


def _changes(before: ContentItem, after: ContentItem, kind: FeedbackKind) -> list[str]:
    changes: list[str] = []
    if kind == "rewrite" and after.question != before.question:
        changes.append("Question text updated")
    if after.answer != before.answer:
        changes.append("Answer enhanced")
    if after.explanation != before.explanation:
        changes.append("Explanation improved")
    if after.diagram != before.diagram:
        changes.append("Diagram updated")
    if kind == "rewrite" and after.tags != before.tags:
        changes.append("Tags updated")
    return changes


def build_comment(state: ProcessorState) -> str:
    """Commentaire de clôture (succès ou échec) pour le rapport courant."""
    if state.error:
        return (
            f"## ❌ Processing Failed\n\n**Error:** {state.error}\n\n"
            "Please check the question ID and try again, or contact maintainers."
        )
    item_id = state.parsed.item_id if state.parsed else None
    if state.kind == "disable":
        return (
            f"## ✅ Question Disabled\n\n**Question ID:** `{item_id}`\n\n"
            "The question has been disabled and will no longer appear in the app.\n\n"
            f"---\n{BOT_SIGNATURE}"
        )
    action = "Improved" if state.kind == "improve" else "Rewritten"
    lines = [f"## ✅ Question {action}", "", f"**Question ID:** `{item_id}`", "", "### Changes Made:"]
    if state.item is not None and state.updated is not None:
        changes = _changes(state.item, state.updated, state.kind or "improve")
        lines.extend(f"- {c}" for c in changes or ["No visible change"])
    return "\n".join(lines) + f"\n\n---\n{BOT_SIGNATURE}"


class FeedbackProcessor:
    """Orchestrateur des rapports de feedback."""

    def __init__(
        self,
        content: ContentRepository,
        ledger: FeedbackLedger,
        tracker: ReportTracker | None = None,
        rewriter: Rewriter | None = None,
        processor_label: str = "bot:processor",
        max_reports: int = 10,
        cooldown: timedelta = timedelta(hours=24),
        certification_channels: Collection[str] = (),
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialise le processeur.

        Args:
            content: Store de contenu.
            ledger: Registre d'idempotence.
            tracker: Tracker de rapports (requis hors mode externe).
            rewriter: Collaborateur de réécriture (requis pour improve/rewrite).
            processor_label: Label désignant les rapports à traiter.
            max_reports: Nombre maximal de rapports par exécution.
            cooldown: Fenêtre pendant laquelle un rapport complété n'est pas repris.
            certification_channels: Canaux de certification (priorisation).
            now: Horloge injectable.
        """
        self.content = content
        self.ledger = ledger
        self.tracker = tracker
        self.rewriter = rewriter
        self.processor_label = processor_label
        self.max_reports = max_reports
        self.cooldown = cooldown
        self.certification_channels = frozenset(certification_channels)
        self._now = now or (lambda: datetime.now(UTC))
        self._log = structlog.get_logger(__name__).bind(component="feedback_processor")
        self._handlers: dict[Stage, Callable[[ProcessorState], tuple[Stage, ProcessorState]]] = {
            Stage.FETCH_REPORTS: self._fetch_reports,
            Stage.PARSE_REPORT: self._parse_report,
            Stage.FETCH_ITEM: self._fetch_item,
            Stage.EXECUTE_ACTION: self._execute_action,
            Stage.PERSIST_AND_CLOSE: self._persist_and_close,
        }

    # -------------------- Entrée publique --------------------

    def run(
        self,
        max_reports: int | None = None,
        single_report_id: str | None = None,
        external_reports: Sequence[FeedbackReport | Mapping[str, Any]] | None = None,
    ) -> FeedbackRunSummary:
        """Traite un lot de rapports.

        Args:
            max_reports: Borne du lot (défaut: celle de l'instance).
            single_report_id: Ne traite que ce rapport (doit porter le label du processeur).
            external_reports: Lot externe; les labels sont dérivés des marqueurs de titre et le
                tracker n'est pas sollicité.

        Returns:
            FeedbackRunSummary: Bilan de l'exécution.
        """
        externals: list[FeedbackReport] | None = None
        if external_reports is not None:
            externals = [
                r if isinstance(r, FeedbackReport) else external_report(r, self.processor_label)
                for r in external_reports
            ]
        state = ProcessorState(
            max_reports=max_reports if max_reports is not None else self.max_reports,
            single_report_id=single_report_id,
            external_reports=externals,
        )
        stage = Stage.FETCH_REPORTS
        while stage is not Stage.DONE:
            stage, state = self.dispatch(stage, state)
        summary = FeedbackRunSummary(
            fetched=state.fetched,
            skipped=state.skipped,
            results=state.results,
            error=state.run_error,
        )
        self._log.info(
            "feedback_run_finished",
            fetched=summary.fetched,
            skipped=summary.skipped,
            succeeded=summary.succeeded,
            failed=summary.failed,
            error=summary.error,
        )
        return summary

    def dispatch(self, stage: Stage, state: ProcessorState) -> tuple[Stage, ProcessorState]:
        """Exécute une étape et retourne l'étape suivante."""
        if stage is Stage.DONE:
            return Stage.DONE, state
        return self._handlers[stage](state)

    # -------------------- Helpers registre --------------------

    def _ledger_call(self, op: str, fn: Callable[[], Any], default: Any = None) -> Any:
        try:
            return fn()
        except LedgerError as exc:
            LEDGER_ERRORS.labels(op=op).inc()
            self._log.warning("ledger_error", op=op, error=str(exc))
            return default

    # -------------------- Étapes --------------------

    def _load_reports(self, state: ProcessorState) -> list[FeedbackReport]:
        if state.external_reports is not None:
            return list(state.external_reports)
        if self.tracker is None:
            raise IntakeError("no report tracker configured")
        if state.single_report_id is not None:
            report = self.tracker.get_report(state.single_report_id)
            if report is None or self.processor_label not in report.labels:
                return []
            return [report]
        return self.tracker.list_open_reports(self.processor_label, state.max_reports)

    def _skip_reason(self, report: FeedbackReport) -> str | None:
        if LABEL_IN_PROGRESS in report.labels:
            return "in_progress"
        if LABEL_COMPLETED in report.labels:
            return "completed"
        recent = self._ledger_call(
            "read",
            lambda: self.ledger.was_recently_completed(report.id, self.cooldown),
            default=False,
        )
        if recent:
            return "cooldown"
        return None

    def _fetch_reports(self, state: ProcessorState) -> tuple[Stage, ProcessorState]:
        try:
            reports = self._load_reports(state)
        except Exception as exc:
            state.run_error = str(exc)
            self._log.error("feedback_fetch_failed", error=str(exc))
            return Stage.DONE, state
        state.fetched = len(reports)
        pending: list[FeedbackReport] = []
        seen: set[str] = set()
        for report in reports:
            reason = "duplicate" if report.id in seen else self._skip_reason(report)
            seen.add(report.id)
            if reason:
                state.skipped += 1
                FEEDBACK_SKIPPED.labels(reason=reason).inc()
                self._log.info("feedback_report_skipped", report_id=report.id, reason=reason)
                continue
            pending.append(report)
        ordered = prioritize_reports(
            pending,
            channel_counts=self.content.get_channel_counts,
            channel_of=self.content.channel_of,
            certification_channels=self.certification_channels,
        )
        state.reports = ordered[: max(0, state.max_reports)]
        self._log.info("feedback_reports_fetched", fetched=state.fetched, pending=len(state.reports))
        return (Stage.PARSE_REPORT if state.reports else Stage.DONE), state

    def _parse_report(self, state: ProcessorState) -> tuple[Stage, ProcessorState]:
        state.reset_current()
        if state.cursor >= len(state.reports):
            return Stage.DONE, state
        report = state.reports[state.cursor]
        state.current = report
        state.kind = resolve_kind(report.labels)
        try:
            state.parsed = parse_report(report)
        except ReportParseError as exc:
            state.error = str(exc)
            return Stage.PERSIST_AND_CLOSE, state

        claimed = self._ledger_call("claim", lambda: self.ledger.claim(report.id), default=True)
        if not claimed:
            state.skipped += 1
            FEEDBACK_SKIPPED.labels(reason="claimed").inc()
            self._log.info("feedback_report_claimed_elsewhere", report_id=report.id)
            state.cursor += 1
            return Stage.PARSE_REPORT, state
        state.claimed = True
        parsed = state.parsed
        self._ledger_call(
            "write", lambda: self.ledger.record_start(report.id, parsed.item_id, parsed.kind)
        )
        if not state.external and self.tracker is not None:
            try:
                self.tracker.add_label(report.id, LABEL_IN_PROGRESS)
            except Exception as exc:
                self._log.warning("tracker_label_failed", report_id=report.id, error=str(exc))
        return Stage.FETCH_ITEM, state

    def _fetch_item(self, state: ProcessorState) -> tuple[Stage, ProcessorState]:
        if state.parsed is None:
            raise IntakeError("no parsed report to resolve")
        try:
            item = self.content.get_item(state.parsed.item_id)
        except Exception as exc:
            state.error = str(exc)
            return Stage.PERSIST_AND_CLOSE, state
        if item is None:
            state.error = "Question not found in content store"
            return Stage.PERSIST_AND_CLOSE, state
        state.item = item
        return Stage.EXECUTE_ACTION, state

    def _execute_action(self, state: ProcessorState) -> tuple[Stage, ProcessorState]:
        if state.parsed is None or state.item is None:
            raise IntakeError("no item loaded for the current report")
        item = state.item
        kind = state.parsed.kind
        try:
            if kind == "disable":
                state.updated = self.content.set_status(item.id, "disabled")
                return Stage.PERSIST_AND_CLOSE, state
            if self.rewriter is None:
                raise IntakeError("no rewriting collaborator configured")
            result = self.rewriter.rewrite(item, kind, state.parsed.note)
        except Exception as exc:
            state.error = str(exc)
            return Stage.PERSIST_AND_CLOSE, state
        if result is None or result.is_empty():
            state.error = "Action produced no result"
            return Stage.PERSIST_AND_CLOSE, state

        update: dict[str, Any] = {
            "answer": result.answer or item.answer,
            "explanation": result.explanation or item.explanation,
            "diagram": result.diagram or item.diagram,
            "last_updated": self._now(),
        }
        if kind == "rewrite":
            update["question"] = result.question or item.question
            update["tags"] = result.tags or item.tags
        state.updated = item.model_copy(update=update)
        return Stage.PERSIST_AND_CLOSE, state

    def _persist_and_close(self, state: ProcessorState) -> tuple[Stage, ProcessorState]:
        report = state.current
        if report is None:
            raise IntakeError("no current report to close")
        kind = state.kind or "improve"

        if not state.error and kind != "disable" and state.updated is not None:
            try:
                self.content.save_item(state.updated)
            except Exception as exc:
                state.error = str(exc)

        comment = build_comment(state)
        if not state.external and self.tracker is not None:
            status_label = LABEL_FAILED if state.error else LABEL_COMPLETED
            try:
                self.tracker.post_comment(report.id, comment)
                self.tracker.close_issue(
                    report.id,
                    [self.processor_label, f"{FEEDBACK_LABEL_PREFIX}{kind}", status_label],
                )
            except Exception as exc:
                self._log.error("tracker_close_failed", report_id=report.id, error=str(exc))
                state.error = state.error or f"tracker close failed: {exc}"

        success = state.error is None
        item_id = state.parsed.item_id if state.parsed else None
        self._ledger_call(
            "write",
            lambda: self.ledger.record_complete(
                report.id,
                success,
                result={"item_id": item_id, "kind": kind} if success else None,
                error=state.error,
            ),
        )
        if state.claimed:
            self._ledger_call("release", lambda: self.ledger.release(report.id))

        FEEDBACK_REPORTS.labels(kind=kind, outcome="success" if success else "failure").inc()
        log_method = self._log.info if success else self._log.warning
        log_method(
            "feedback_report_processed",
            report_id=report.id,
            item_id=item_id,
            kind=kind,
            success=success,
            error=state.error,
        )
        state.results.append(
            FeedbackResult(
                report_id=report.id,
                item_id=item_id,
                kind=kind,
                success=success,
                error=state.error,
                summary=comment.splitlines()[0],
            )
        )
        state.cursor += 1
        return Stage.PARSE_REPORT, state
