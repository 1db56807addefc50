"""Phase state machine for the submit workflow.

The I/O steps live in SubmitSession; transition() only maps a state and an
event record to the next state.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Union

from ..typing import JJSprError
from . import CommentSummary, LoadResult, StackedPR, SyncOutcome
from .stack import RowState, Stack

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    LOADING = "loading"
    UP_TO_DATE = "up_to_date"
    CONFIRMATION = "confirmation"
    SYNCING = "syncing"
    UPDATING_COMMENTS = "updating_comments"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_PHASES = frozenset({Phase.UP_TO_DATE, Phase.COMPLETE, Phase.ERROR})


class InvalidTransition(ValueError):
    """An event arrived in a phase that does not accept it."""


@dataclass(frozen=True)
class RevisionsLoaded:
    loaded: Optional[LoadResult] = None
    error: Optional[JJSprError] = None


@dataclass(frozen=True)
class Confirmed:
    pass


@dataclass(frozen=True)
class Declined:
    pass


@dataclass(frozen=True)
class RevisionsSynced:
    outcome: Optional[SyncOutcome] = None
    error: Optional[JJSprError] = None


@dataclass(frozen=True)
class CommentsUpdated:
    summary: Optional[CommentSummary] = None
    error: Optional[JJSprError] = None


Event = Union[RevisionsLoaded, Confirmed, Declined, RevisionsSynced, CommentsUpdated]


@dataclass(frozen=True)
class SubmitState:
    phase: Phase = Phase.LOADING
    loaded: Optional[LoadResult] = None
    stack: Optional[Stack] = None
    outcome: Optional[SyncOutcome] = None
    comments: Optional[CommentSummary] = None
    error: Optional[JJSprError] = None
    declined: bool = False

    @property
    def done(self) -> bool:
        return self.phase in TERMINAL_PHASES or self.declined


def _fail(state: SubmitState, error: JJSprError, stack: Optional[Stack] = None) -> SubmitState:
    return replace(state, phase=Phase.ERROR, error=error, stack=stack or state.stack)


def transition(state: SubmitState, event: Event) -> SubmitState:
    """Return the state that follows state after event."""
    if state.done:
        raise InvalidTransition(f"{type(event).__name__} after session ended in {state.phase.value}")

    if state.phase == Phase.LOADING and isinstance(event, RevisionsLoaded):
        if event.error is not None:
            return _fail(state, event.error)
        if event.loaded is None:
            raise InvalidTransition("RevisionsLoaded without a payload")
        phase = Phase.CONFIRMATION if event.loaded.needs_sync else Phase.UP_TO_DATE
        return replace(state, phase=phase, loaded=event.loaded, stack=event.loaded.stack)

    if state.phase == Phase.CONFIRMATION and isinstance(event, Confirmed):
        stack = state.stack
        if stack is not None:
            pending = [r.change_id for r in stack.mutable_rows() if r.needs_sync and r.change_id]
            stack = stack.with_states(pending, RowState.IN_PROGRESS)
        return replace(state, phase=Phase.SYNCING, stack=stack)

    if state.phase == Phase.CONFIRMATION and isinstance(event, Declined):
        return replace(state, declined=True)

    if state.phase == Phase.SYNCING and isinstance(event, RevisionsSynced):
        if event.error is not None:
            return _fail(state, event.error)
        if event.outcome is None:
            raise InvalidTransition("RevisionsSynced without a payload")
        if event.outcome.error is not None:
            return replace(_fail(state, event.outcome.error, event.outcome.stack), outcome=event.outcome)
        return replace(state, phase=Phase.UPDATING_COMMENTS, outcome=event.outcome,
                       stack=event.outcome.stack or state.stack)

    if state.phase == Phase.UPDATING_COMMENTS and isinstance(event, CommentsUpdated):
        if event.error is not None:
            return _fail(state, event.error)
        return replace(state, phase=Phase.COMPLETE, comments=event.summary)

    raise InvalidTransition(f"{type(event).__name__} is not valid in phase {state.phase.value}")


class SubmitSession:
    """Drives a StackedPR through the submit phases."""

    def __init__(self, spr: StackedPR, revset: Optional[str] = None):
        self.spr = spr
        self.revset = revset

    def run(self, confirm: Callable[[SubmitState], bool],
            observer: Optional[Callable[[SubmitState], None]] = None) -> SubmitState:
        """Run until a terminal phase, asking confirm before any side effect."""
        state = SubmitState()
        if observer:
            observer(state)
        while not state.done:
            event = self.step(state, confirm)
            state = transition(state, event)
            logger.debug(f"submit: {type(event).__name__} -> {state.phase.value}")
            if observer:
                observer(state)
        return state

    def step(self, state: SubmitState, confirm: Callable[[SubmitState], bool]) -> Event:
        """Perform the I/O for the current phase and report it as an event."""
        if state.phase == Phase.LOADING:
            try:
                return RevisionsLoaded(loaded=self.spr.load(self.revset))
            except JJSprError as e:
                return RevisionsLoaded(error=e)

        if state.phase == Phase.CONFIRMATION:
            return Confirmed() if confirm(state) else Declined()

        if state.phase == Phase.SYNCING:
            assert state.loaded is not None
            try:
                return RevisionsSynced(outcome=self.spr.sync_revisions(state.loaded))
            except JJSprError as e:
                return RevisionsSynced(error=e)

        if state.phase == Phase.UPDATING_COMMENTS:
            assert state.loaded is not None
            try:
                return CommentsUpdated(summary=self.spr.update_comments(state.loaded))
            except JJSprError as e:
                return CommentsUpdated(error=e)

        raise InvalidTransition(f"nothing to do in phase {state.phase.value}")
