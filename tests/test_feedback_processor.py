"""
Tests pour le processeur de feedback.

Ce module teste la machine à états de bout en bout avec le tracker et le store en mémoire: actions
improve / rewrite / disable, clôture en échec, idempotence dans la fenêtre de cool-down,
revendication concurrente, priorisation et mode externe.
"""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import redis

from intake.domain.errors import IntakeError
from intake.domain.feedback_processor import (
    FeedbackProcessor,
    ProcessorState,
    Stage,
    build_comment,
    external_report,
)
from intake.domain.models import ContentItem, FeedbackReport, RewriteResult
from intake.infra.content_repo import InMemoryContentRepo
from intake.infra.ops.ledger import FeedbackLedger
from intake.infra.tracker.memory_tracker import InMemoryTracker
from tests.fakes import FakeRewriter

LABEL = "bot:processor"


def _body(item_id: str, note: str = "Please add an example") -> str:
    return f"**Question ID:** `{item_id}`\n\n### Details\n{note}\n---\n"


def _item(item_id: str = "q1", channel: str = "backend") -> ContentItem:
    return ContentItem(
        id=item_id,
        question="How does a REST API handle versioning?",
        answer="Through URL prefixes or headers, depending on the server design.",
        channel=channel,
    )


def _processor(
    items: list[ContentItem] | None = None,
    reports: list[FeedbackReport] | None = None,
    rewriter: FakeRewriter | None = None,
    ledger: FeedbackLedger | None = None,
    **kwargs,
) -> tuple[FeedbackProcessor, InMemoryContentRepo, InMemoryTracker, FeedbackLedger]:
    content = InMemoryContentRepo(items if items is not None else [_item()])
    tracker = InMemoryTracker(reports or [])
    ledger = ledger or FeedbackLedger()
    processor = FeedbackProcessor(
        content=content,
        ledger=ledger,
        tracker=tracker,
        rewriter=rewriter,
        processor_label=LABEL,
        **kwargs,
    )
    return processor, content, tracker, ledger


def test_improve_updates_item_and_closes_report() -> None:
    """Teste une amélioration réussie: item mis à jour, rapport clos avec commentaire."""
    rewriter = FakeRewriter(RewriteResult(answer="A much better answer with examples."))
    report = FeedbackReport(id="10", body=_body("q1"), labels=[LABEL])
    processor, content, tracker, ledger = _processor(reports=[report], rewriter=rewriter)

    summary = processor.run()

    assert summary.fetched == 1
    assert summary.succeeded == 1
    assert rewriter.calls == [("q1", "improve", "Please add an example")]
    assert content.get_item("q1").answer == "A much better answer with examples."
    assert content.get_item("q1").last_updated is not None
    assert not tracker.is_open("10")
    assert tracker.get_report("10").labels == [LABEL, "feedback:improve", "bot:completed"]
    comment = tracker.comments("10")[0]
    assert comment.startswith("## ✅ Question Improved")
    assert "- Answer enhanced" in comment
    assert ledger.get("10").status == "completed"


def test_rewrite_replaces_question_and_tags() -> None:
    """Teste une réécriture complète."""
    rewriter = FakeRewriter(
        RewriteResult(question="How do you version a public REST API?", tags=["api", "rest"])
    )
    report = FeedbackReport(id="11", body=_body("q1"), labels=[LABEL, "feedback:rewrite"])
    processor, content, tracker, _ = _processor(reports=[report], rewriter=rewriter)

    processor.run()

    item = content.get_item("q1")
    assert item.question == "How do you version a public REST API?"
    assert item.tags == ["api", "rest"]
    assert item.answer == _item().answer
    assert "- Question text updated" in tracker.comments("11")[0]


def test_disable_sets_status_without_rewriter() -> None:
    """Teste la désactivation: statut `disabled`, aucun appel au collaborateur."""
    rewriter = FakeRewriter()
    report = FeedbackReport(id="12", body=_body("q1"), labels=[LABEL, "feedback:disable"])
    processor, content, tracker, _ = _processor(reports=[report], rewriter=rewriter)

    summary = processor.run()

    assert summary.succeeded == 1
    assert content.get_item("q1").status == "disabled"
    assert rewriter.calls == []
    assert tracker.comments("12")[0].startswith("## ✅ Question Disabled")
    assert "bot:completed" in tracker.get_report("12").labels


def test_missing_item_closes_with_failure_comment() -> None:
    """Teste la clôture en échec quand l'item est introuvable."""
    report = FeedbackReport(id="13", body=_body("ghost"), labels=[LABEL])
    processor, _, tracker, ledger = _processor(reports=[report], rewriter=FakeRewriter())

    summary = processor.run()

    assert summary.failed == 1
    result = summary.results[0]
    assert result.error == "Question not found in content store"
    assert not tracker.is_open("13")
    assert tracker.comments("13")[0].startswith("## ❌ Processing Failed")
    assert tracker.get_report("13").labels == [LABEL, "feedback:improve", "bot:failed"]
    assert ledger.get("13").status == "failed"


def test_unparseable_report_is_closed_and_batch_continues() -> None:
    """Teste qu'un rapport illisible est clos en échec sans bloquer le lot."""
    reports = [
        FeedbackReport(
            id="14", body="help, something is wrong", labels=[LABEL, "feedback:rewrite"]
        ),
        FeedbackReport(id="15", body=_body("q1"), labels=[LABEL, "feedback:disable"]),
    ]
    processor, content, tracker, _ = _processor(reports=reports)

    summary = processor.run()

    by_id = {r.report_id: r for r in summary.results}
    assert not by_id["14"].success
    assert by_id["15"].success
    assert by_id["14"].kind == "rewrite"
    assert by_id["14"].item_id is None
    assert "Could not parse question ID" in tracker.comments("14")[0]
    assert content.get_item("q1").status == "disabled"


def test_no_result_from_collaborator_is_a_failure() -> None:
    """Teste l'échec quand le collaborateur ne renvoie rien ou n'est pas configuré."""
    reports = [FeedbackReport(id="16", body=_body("q1"), labels=[LABEL])]
    processor, content, _, _ = _processor(reports=reports, rewriter=FakeRewriter(None))
    assert processor.run().results[0].error == "Action produced no result"
    assert content.get_item("q1").answer == _item().answer

    reports = [FeedbackReport(id="17", body=_body("q1"), labels=[LABEL])]
    processor, _, _, _ = _processor(reports=reports, rewriter=None)
    assert processor.run().results[0].error == "no rewriting collaborator configured"


def test_collaborator_exception_is_reported() -> None:
    """Teste qu'une exception du collaborateur ferme le rapport en échec."""
    reports = [FeedbackReport(id="18", body=_body("q1"), labels=[LABEL])]
    rewriter = FakeRewriter(error=RuntimeError("circuit 'rewriter' is open"))
    processor, _, tracker, _ = _processor(reports=reports, rewriter=rewriter)
    summary = processor.run()
    assert summary.results[0].error == "circuit 'rewriter' is open"
    assert "bot:failed" in tracker.get_report("18").labels


def test_in_progress_and_completed_labels_are_skipped() -> None:
    """Teste que les rapports déjà pris en charge sont ignorés."""
    reports = [
        FeedbackReport(id="19", body=_body("q1"), labels=[LABEL, "bot:in-progress"]),
        FeedbackReport(id="20", body=_body("q1"), labels=[LABEL, "bot:completed"]),
    ]
    processor, _, _, _ = _processor(reports=reports, rewriter=FakeRewriter())
    summary = processor.run()
    assert summary.fetched == 2
    assert summary.skipped == 2
    assert summary.results == []


def test_external_reports_are_idempotent_within_cooldown() -> None:
    """Teste qu'un rapport externe complété n'est pas retraité pendant le cool-down."""
    rewriter = FakeRewriter(RewriteResult(explanation="Clearer explanation."))
    content = InMemoryContentRepo([_item()])
    ledger = FeedbackLedger()
    processor = FeedbackProcessor(content=content, ledger=ledger, rewriter=rewriter)
    raw = [{"number": 42, "title": "[IMPROVE] versioning", "body": _body("q1")}]

    first = processor.run(external_reports=raw)
    second = processor.run(external_reports=raw)

    assert first.succeeded == 1
    assert second.fetched == 1
    assert second.skipped == 1
    assert second.results == []
    assert len(rewriter.calls) == 1


def test_repeated_report_in_batch_is_processed_once() -> None:
    """Teste qu'un rapport présent deux fois dans le lot n'est appliqué qu'une fois."""
    rewriter = FakeRewriter(RewriteResult(answer="An answer rewritten only once."))
    processor = FeedbackProcessor(
        content=InMemoryContentRepo([_item()]), ledger=FeedbackLedger(), rewriter=rewriter
    )
    raw = {"number": 42, "title": "[IMPROVE] versioning", "body": _body("q1")}

    summary = processor.run(external_reports=[raw, dict(raw)])

    assert summary.fetched == 2
    assert summary.skipped == 1
    assert [r.report_id for r in summary.results] == ["42"]
    assert len(rewriter.calls) == 1


def test_claimed_report_is_skipped() -> None:
    """Teste qu'un rapport revendiqué par une autre instance est ignoré."""
    ledger = FeedbackLedger()
    ledger.claim("21")
    reports = [FeedbackReport(id="21", body=_body("q1"), labels=[LABEL])]
    rewriter = FakeRewriter(RewriteResult(answer="x" * 60))
    processor, _, tracker, _ = _processor(reports=reports, rewriter=rewriter, ledger=ledger)
    summary = processor.run()
    assert summary.skipped == 1
    assert summary.results == []
    assert rewriter.calls == []
    assert tracker.is_open("21")


def test_ledger_errors_do_not_stop_processing() -> None:
    """Teste que les erreurs du registre sont tolérées."""
    client = Mock()
    client.get.side_effect = redis.ConnectionError("down")
    client.set.side_effect = redis.ConnectionError("down")
    client.delete.side_effect = redis.ConnectionError("down")
    reports = [FeedbackReport(id="22", body=_body("q1"), labels=[LABEL, "feedback:disable"])]
    processor, content, _, _ = _processor(reports=reports, ledger=FeedbackLedger(client=client))
    summary = processor.run()
    assert summary.succeeded == 1
    assert content.get_item("q1").status == "disabled"


def test_scarce_channel_first_and_max_reports() -> None:
    """Teste la priorisation par rareté et la borne du lot."""
    items = [_item("rare1", "sre")] + [_item(f"c{n}", "frontend") for n in range(3)]
    reports = [
        FeedbackReport(id="30", body=_body("c0"), labels=[LABEL, "feedback:disable"]),
        FeedbackReport(id="31", body=_body("rare1"), labels=[LABEL, "feedback:disable"]),
    ]
    processor, content, _, _ = _processor(items=items, reports=reports)
    summary = processor.run()
    assert [r.report_id for r in summary.results] == ["31", "30"]

    raw = [
        {"id": "50", "title": "[DISABLE] dup", "body": _body("c1")},
        {"id": "51", "title": "[DISABLE] dup", "body": _body("rare1")},
    ]
    external = FeedbackProcessor(content=content, ledger=FeedbackLedger(), processor_label=LABEL)
    summary = external.run(max_reports=1, external_reports=raw)
    assert [r.report_id for r in summary.results] == ["51"]
    assert content.get_item("c1").status == "active"


def test_single_report_mode() -> None:
    """Teste le traitement d'un rapport unique par identifiant."""
    reports = [
        FeedbackReport(id="40", body=_body("q1"), labels=[LABEL, "feedback:disable"]),
        FeedbackReport(id="41", body=_body("q1"), labels=["unrelated"]),
    ]
    processor, _, tracker, _ = _processor(reports=reports)
    assert [r.report_id for r in processor.run(single_report_id="40").results] == ["40"]
    assert processor.run(single_report_id="41").results == []
    assert processor.run(single_report_id="404").fetched == 0
    assert tracker.is_open("41")


def test_missing_tracker_is_a_run_error() -> None:
    """Teste l'erreur d'exécution sans tracker hors mode externe."""
    processor = FeedbackProcessor(content=InMemoryContentRepo(), ledger=FeedbackLedger())
    summary = processor.run()
    assert summary.error == "no report tracker configured"
    assert summary.processed == 0


def test_external_report_conversion_and_dispatch_done() -> None:
    """Teste la conversion d'un rapport externe et l'étape terminale."""
    report = external_report({"id": 7, "title": "[DISABLE] spam", "body": "b"}, LABEL)
    assert report.id == "7"
    assert report.labels == [LABEL, "feedback:disable"]
    processor = FeedbackProcessor(content=InMemoryContentRepo(), ledger=FeedbackLedger())
    state = ProcessorState(max_reports=1)
    assert processor.dispatch(Stage.DONE, state) == (Stage.DONE, state)


def test_build_comment_failure() -> None:
    """Teste le commentaire d'échec."""
    state = ProcessorState(max_reports=1)
    state.error = "boom"
    assert build_comment(state).startswith("## ❌ Processing Failed\n\n**Error:** boom")


def test_stages_without_current_report_raise() -> None:
    """Teste que les étapes appelées sans rapport courant lèvent une erreur explicite."""
    processor = FeedbackProcessor(content=InMemoryContentRepo(), ledger=FeedbackLedger())
    for stage in (Stage.FETCH_ITEM, Stage.EXECUTE_ACTION, Stage.PERSIST_AND_CLOSE):
        with pytest.raises(IntakeError):
            processor.dispatch(stage, ProcessorState(max_reports=1))
