"""Card and deck shapes shared by every layer.

Card ids are generated on the client side (here) and never by the store or
the language model, so that saves can match cards across sessions by id.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

DEFAULT_DECK_TITLE_PREFIX = 'New Study Deck'


def new_card_id() -> str:
    return str(uuid.uuid4())


class Rating(str, Enum):
    AGAIN = 'again'
    HARD = 'hard'
    GOOD = 'good'
    EASY = 'easy'

    @property
    def is_retiring(self) -> bool:
        return self in (Rating.GOOD, Rating.EASY)


class CardDraft(BaseModel):
    """A front/back pair without identity, as returned by the language model."""
    front: str
    back: str


class Card(BaseModel):
    id: str = Field(default_factory=new_card_id, min_length=1)
    front: str = ''
    back: str = ''
    # last rating seen, for display only
    status: Optional[Rating] = None

    def is_complete(self) -> bool:
        return bool(self.front.strip()) and bool(self.back.strip())


class Deck(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    cards: List[Card] = Field(default_factory=list)

    @model_validator(mode='after')
    def _unique_card_ids(self) -> 'Deck':
        seen = set()
        for card in self.cards:
            if card.id in seen:
                raise ValueError(f'duplicate card id: {card.id}')
            seen.add(card.id)
        return self

    def display_title(self, now: Optional[datetime] = None) -> str:
        if self.title and self.title.strip():
            return self.title.strip()
        now = now or datetime.now()
        return f'{DEFAULT_DECK_TITLE_PREFIX} {now.strftime("%Y-%m-%d")}'
