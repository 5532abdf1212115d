"""
Tests pour la configuration structlog.
"""

from __future__ import annotations

import structlog

from intake.core.logging import setup_logging


def test_setup_logging_filters_by_level(capsys) -> None:
    """Teste le filtrage par niveau et le repli sur INFO pour un niveau inconnu."""
    setup_logging("warning")
    log = structlog.get_logger("tests").bind(component="tests")
    log.info("hidden_event")
    log.warning("visible_event", item_id="q1")
    out = capsys.readouterr().out
    assert "visible_event" in out
    assert "hidden_event" not in out

    setup_logging("not-a-level")
    structlog.get_logger("tests").info("info_event")
    assert "info_event" in capsys.readouterr().out
    setup_logging("INFO")
