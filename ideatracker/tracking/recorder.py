"""Manual outcome recording for ideas closed outside the sweep."""

from __future__ import annotations

import math
from datetime import datetime

import pytz
import structlog

from ideatracker.core.errors import ConflictingTransition, IdeaNotFound, InvalidManualOutcome
from ideatracker.core.events import IDEA_RESOLVED, EventBus
from ideatracker.core.models import ManualOutcome, OutcomeStatus, ResolutionReason, TradeIdea
from ideatracker.tracking.rules import build_resolution
from ideatracker.tracking.store import IdeaStore

logger = structlog.get_logger()

MANUAL_TRANSITIONS: dict[ManualOutcome, tuple[OutcomeStatus, ResolutionReason]] = {
    ManualOutcome.WON: (OutcomeStatus.HIT_TARGET, ResolutionReason.MANUAL_USER_WON),
    ManualOutcome.LOST: (OutcomeStatus.HIT_STOP, ResolutionReason.MANUAL_USER_LOST),
    ManualOutcome.BREAKEVEN: (OutcomeStatus.MANUAL_EXIT, ResolutionReason.MANUAL_USER_BREAKEVEN),
}


def _validate_exit_price(exit_price: object) -> float:
    if isinstance(exit_price, bool) or not isinstance(exit_price, (int, float)):
        raise InvalidManualOutcome(
            "exit price must be a number", {"exit_price": repr(exit_price)}
        )
    price = float(exit_price)
    if not math.isfinite(price) or price <= 0:
        raise InvalidManualOutcome(
            "exit price must be positive and finite", {"exit_price": exit_price}
        )
    return price


def _parse_outcome(outcome: ManualOutcome | str) -> ManualOutcome:
    try:
        return ManualOutcome(outcome)
    except ValueError:
        raise InvalidManualOutcome(
            f"unknown outcome {outcome!r}",
            {"allowed": ", ".join(o.value for o in ManualOutcome)},
        ) from None


class ManualOutcomeRecorder:
    """Lets a user close an open idea as won, lost or breakeven.

    Shares the conditional transition with the sweep, so whichever writer
    commits first wins and the other is a no-op.
    """

    def __init__(self, store: IdeaStore, event_bus: EventBus | None = None, clock=None) -> None:
        self._store = store
        self._event_bus = event_bus
        self._clock = clock or (lambda: datetime.now(pytz.UTC))
        self._log = logger.bind(component="manual_recorder")

    def record(
        self,
        idea_id: str,
        outcome: ManualOutcome | str,
        exit_price: float,
        notes: str | None = None,
    ) -> TradeIdea:
        """Close an open idea. Returns the stored record after the write.

        Raises InvalidManualOutcome (or IdeaNotFound) before touching state if
        the request is malformed or the idea is already closed.
        """
        price = _validate_exit_price(exit_price)
        manual = _parse_outcome(outcome)

        idea = self._store.get_idea(idea_id)
        if idea is None:
            raise IdeaNotFound(idea_id)
        if not idea.is_open:
            raise InvalidManualOutcome(
                f"idea {idea_id} is already closed",
                {"idea_id": idea_id, "status": idea.outcome_status.value},
            )

        status, reason = MANUAL_TRANSITIONS[manual]
        resolution = build_resolution(idea, status, reason, price, self._clock(), notes=notes)

        try:
            self._store.transition(idea_id, resolution)
        except ConflictingTransition:
            self._log.info("manual_outcome_lost_race", idea_id=idea_id, outcome=manual.value)
            return self._store.get_idea(idea_id)

        closed = self._store.get_idea(idea_id)
        self._log.info(
            "manual_outcome_recorded",
            idea_id=idea_id,
            symbol=idea.symbol,
            outcome=manual.value,
            exit_price=price,
            percent_gain=round(resolution.percent_gain, 2),
        )
        if self._event_bus:
            self._event_bus.publish(IDEA_RESOLVED, idea=closed, resolution=resolution)
        return closed

    def annotate(self, idea_id: str, notes: str) -> TradeIdea:
        """Replace the outcome notes of a closed idea."""
        idea = self._store.get_idea(idea_id)
        if idea is None:
            raise IdeaNotFound(idea_id)
        if idea.is_open:
            raise InvalidManualOutcome(f"idea {idea_id} is still open", {"idea_id": idea_id})

        self._store.update_notes(idea_id, notes)
        return self._store.get_idea(idea_id)
