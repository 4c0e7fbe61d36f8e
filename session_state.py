"""Explicit session state.

Every update returns a new snapshot; nothing is mutated in place, so the UI and
the export coordinator can hand the state around without sharing mutable maps.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from watermark_compositor import WatermarkMode

ALL_TARGET = "all"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class ExportJob:
    target: str  # ALL_TARGET or an entry id
    state: JobState = JobState.IDLE


@dataclass(frozen=True)
class SessionState:
    jobs: Tuple[ExportJob, ...] = ()
    editing_id: Optional[str] = None
    draft_name: str = ""
    mode: WatermarkMode = WatermarkMode.CENTERED

    def job(self, target: str) -> ExportJob:
        for job in self.jobs:
            if job.target == target:
                return job
        return ExportJob(target)

    def is_running(self, target: str) -> bool:
        return self.job(target).state is JobState.RUNNING

    @property
    def running(self) -> Tuple[str, ...]:
        return tuple(j.target for j in self.jobs if j.state is JobState.RUNNING)

    def with_job(self, target: str, state: JobState) -> "SessionState":
        others = tuple(j for j in self.jobs if j.target != target)
        if state is JobState.IDLE:
            return replace(self, jobs=others)
        return replace(self, jobs=others + (ExportJob(target, state),))

    def start_editing(self, entry_id: str, current_name: str) -> "SessionState":
        return replace(self, editing_id=entry_id, draft_name=current_name)

    def edit_draft(self, text: str) -> "SessionState":
        return replace(self, draft_name=text)

    def stop_editing(self) -> "SessionState":
        return replace(self, editing_id=None, draft_name="")

    def with_mode(self, mode: WatermarkMode) -> "SessionState":
        return replace(self, mode=WatermarkMode(mode))

    def forget(self, entry_id: str) -> "SessionState":
        """Drop every trace of a removed entry."""
        state = self.with_job(entry_id, JobState.IDLE)
        if state.editing_id == entry_id:
            state = state.stop_editing()
        return state
