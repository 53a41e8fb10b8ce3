"""Tests for the JSON-backed session history."""

import json
from datetime import datetime
from pathlib import Path

from conftest import make_metrics
from session_report.core.session_history import SessionHistory


def test_record_persists_and_reloads(tmp_path, utc):
    path = tmp_path / "history" / "sessions.json"
    history = SessionHistory(path)
    history.record("PT-1", make_metrics("a", utc(2025, 3, 1)))

    assert path.exists()
    raw = json.loads(path.read_text())
    assert raw[0]["patient_id"] == "PT-1"
    assert raw[0]["metrics"]["session_id"] == "a"

    reloaded = SessionHistory(path)
    assert [m.session_id for m in reloaded.sessions_for("PT-1")] == ["a"]


def test_sessions_sorted_oldest_first(utc):
    history = SessionHistory()
    history.record("PT-1", make_metrics("late", utc(2025, 3, 20)))
    history.record("PT-1", make_metrics("early", utc(2025, 3, 1)))

    assert [m.session_id for m in history.sessions_for("PT-1")] == ["early", "late"]


def test_record_replaces_same_session(utc):
    history = SessionHistory()
    history.record("PT-1", make_metrics("a", utc(2025, 3, 1), rom_asymmetry=10.0))
    history.record("PT-1", make_metrics("a", utc(2025, 3, 1), rom_asymmetry=5.0))

    (session,) = history.sessions_for("PT-1")
    assert session.bilateral.rom_asymmetry == 5.0


def test_naive_timestamps_compare_as_utc(utc):
    history = SessionHistory()
    history.record("PT-1", make_metrics("naive", datetime(2025, 3, 1, 12, 0)))

    before = history.sessions_before("PT-1", utc(2025, 3, 1, 12, 0))
    after = history.sessions_before("PT-1", utc(2025, 3, 1, 12, 1))

    assert before == []
    assert [m.session_id for m in after] == ["naive"]


def test_patients_are_isolated(utc):
    history = SessionHistory()
    history.record("PT-1", make_metrics("a", utc(2025, 3, 1)))
    history.record("PT-2", make_metrics("b", utc(2025, 3, 2)))

    assert history.patient_ids() == ["PT-1", "PT-2"]
    assert [m.session_id for m in history.sessions_for("PT-2")] == ["b"]
    assert history.sessions_for("PT-3") == []


def test_missing_file_is_empty(tmp_path):
    assert SessionHistory(tmp_path / "nope.json").patient_ids() == []


def test_seed_data_loads():
    history = SessionHistory(Path(__file__).resolve().parent.parent / "data" / "sessions.json")
    assert "PT-001" in history.patient_ids()
    assert len(history.sessions_for("PT-001")) == 2
