"""Queue-based review loop over a fixed snapshot of a deck.

A session walks the snapshot front to back. `again`/`hard` send the active
card to the tail, `good`/`easy` retire it for the rest of the pass. The pass
is complete once a retiring rating empties the queue. There are no due dates:
the queue only lives for one interactive session.

A rating is only taken once the answer face is shown, and a skip only before
it. Ratings are scheduling signals only; the engine never edits card content.
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Sequence

from cramly.deck import Card, Rating, require_complete


class StudySessionError(Exception):
    pass


class EmptyQueueError(StudySessionError):
    pass


class InvalidTransitionError(StudySessionError):
    pass


class StudyState(str, Enum):
    IDLE = 'idle'
    REVIEWING = 'reviewing'
    COMPLETED = 'completed'


def format_elapsed(seconds: float) -> str:
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    if minutes > 0:
        return f'{minutes}m {secs}s'
    return f'{secs}s'


@dataclass(frozen=True)
class SessionStats:
    elapsed_seconds: float
    completed_count: int
    remaining: int

    @property
    def elapsed_display(self) -> str:
        return format_elapsed(self.elapsed_seconds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'elapsed_seconds': self.elapsed_seconds,
            'elapsed_display': self.elapsed_display,
            'completed_count': self.completed_count,
            'remaining': self.remaining,
        }


class StudyEngine:
    def __init__(self):
        self.queue: Deque[Card] = deque()
        self.completed_count = 0
        self.session_start: Optional[float] = None
        self.is_flipped = False
        self.state = StudyState.IDLE
        self.last_ratings: Dict[str, Rating] = {}

    @property
    def active_card(self) -> Optional[Card]:
        return self.queue[0] if self.queue else None

    @property
    def finished(self) -> bool:
        return self.state == StudyState.COMPLETED

    def _begin(self, cards: Sequence[Card], now: Optional[float]) -> None:
        require_complete(cards)
        self.queue = deque(cards)
        self.completed_count = 0
        self.session_start = time.time() if now is None else now
        self.is_flipped = False
        self.last_ratings = {}
        # an empty deck has nothing to review
        self.state = StudyState.REVIEWING if self.queue else StudyState.COMPLETED

    def start(self, cards: Sequence[Card], now: Optional[float] = None) -> None:
        """Snapshot `cards` in display order and begin a pass.

        Only a fresh engine can start; a finished pass goes through `restart`.
        Raises IncompleteCardError (state untouched) when a card has an empty side.
        """
        if self.state != StudyState.IDLE:
            raise InvalidTransitionError(f'start is only allowed from {StudyState.IDLE.value}, not {self.state.value}')
        self._begin(list(cards), now)

    def restart(self, cards: Sequence[Card], now: Optional[float] = None) -> None:
        if self.state != StudyState.COMPLETED:
            raise InvalidTransitionError(f'restart is only allowed from {StudyState.COMPLETED.value}, not {self.state.value}')
        self._begin(list(cards), now)

    def _require_active(self, action: str) -> Card:
        if not self.queue:
            raise EmptyQueueError(f'cannot {action}: no active card')
        return self.queue[0]

    def flip(self) -> bool:
        self._require_active('flip')
        self.is_flipped = not self.is_flipped
        return self.is_flipped

    def rate(self, rating: Rating) -> Optional[Card]:
        """Apply `rating` to the active card and return the next active card."""
        rating = Rating(rating)
        card = self._require_active('rate')
        if not self.is_flipped:
            raise InvalidTransitionError('cannot rate: flip the card first')
        self.queue.popleft()
        self.is_flipped = False
        self.last_ratings[card.id] = rating
        if rating.is_retiring:
            self.completed_count += 1
            if not self.queue:
                self.state = StudyState.COMPLETED
        else:
            self.queue.append(card)
        return self.active_card

    def skip(self) -> Optional[Card]:
        self._require_active('skip')
        if self.is_flipped:
            raise InvalidTransitionError('cannot skip: the answer is already shown')
        self.queue.rotate(-1)
        self.is_flipped = False
        return self.active_card

    def stats(self, now: Optional[float] = None) -> SessionStats:
        now = time.time() if now is None else now
        elapsed = now - self.session_start if self.session_start is not None else 0.0
        return SessionStats(elapsed_seconds=max(0.0, elapsed), completed_count=self.completed_count, remaining=len(self.queue))

    def queue_ids(self) -> List[str]:
        return [c.id for c in self.queue]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'queue': [c.model_dump(mode='json') for c in self.queue],
            'completed_count': self.completed_count,
            'session_start': self.session_start,
            'is_flipped': self.is_flipped,
            'last_ratings': {k: v.value for k, v in self.last_ratings.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StudyEngine':
        engine = cls()
        engine.state = StudyState(data.get('state', StudyState.IDLE.value))
        engine.queue = deque(Card.model_validate(c) for c in data.get('queue', []))
        engine.completed_count = int(data.get('completed_count', 0))
        engine.session_start = data.get('session_start')
        engine.is_flipped = bool(data.get('is_flipped', False))
        engine.last_ratings = {k: Rating(v) for k, v in (data.get('last_ratings') or {}).items()}
        return engine
