from __future__ import annotations

import dataclasses

import pytest

from session_state import ALL_TARGET, ExportJob, JobState, SessionState
from watermark_compositor import WatermarkMode


def test_new_state_is_idle():
    state = SessionState()
    assert state.running == ()
    assert not state.is_running(ALL_TARGET)
    assert state.job("abc") == ExportJob("abc", JobState.IDLE)
    assert state.mode is WatermarkMode.CENTERED


def test_with_job_returns_new_snapshot():
    state = SessionState()
    running = state.with_job("abc", JobState.RUNNING)
    assert running.is_running("abc")
    assert not state.is_running("abc")
    assert running.with_job("abc", JobState.IDLE).running == ()


def test_targets_are_independent():
    state = SessionState().with_job("a", JobState.RUNNING).with_job(ALL_TARGET, JobState.RUNNING)
    assert set(state.running) == {"a", ALL_TARGET}
    assert not state.is_running("b")
    assert state.with_job("a", JobState.IDLE).running == (ALL_TARGET,)


def test_editing_flow():
    state = SessionState().start_editing("abc", "Salon")
    assert (state.editing_id, state.draft_name) == ("abc", "Salon")
    state = state.edit_draft("Salon vue mer")
    assert state.draft_name == "Salon vue mer"
    state = state.stop_editing()
    assert state.editing_id is None
    assert state.draft_name == ""


def test_forget_clears_job_and_edit():
    state = (
        SessionState()
        .with_job("abc", JobState.RUNNING)
        .with_job("def", JobState.RUNNING)
        .start_editing("abc", "x")
    )
    state = state.forget("abc")
    assert state.running == ("def",)
    assert state.editing_id is None


def test_forget_keeps_other_edit():
    state = SessionState().start_editing("def", "x").forget("abc")
    assert state.editing_id == "def"


def test_with_mode_accepts_values():
    assert SessionState().with_mode("tiled").mode is WatermarkMode.TILED


def test_state_is_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        SessionState().editing_id = "abc"
