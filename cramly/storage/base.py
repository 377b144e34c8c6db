"""Deck persistence interface.

Stores deal in raw rows (dicts), the way a database driver hands them back.
Conversion into strict Card/Deck shapes happens in `cramly.storage.sync`,
which validates each row through StoredDeck / StoredCard.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


class DeckStoreError(Exception):
    pass


class DeckNotFoundError(DeckStoreError):
    pass


class DeckOwnershipError(DeckStoreError):
    pass


class OwnerRequiredError(DeckStoreError):
    pass


class SaveInProgressError(DeckStoreError):
    pass


class StoredDeck(BaseModel):
    id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    title: str
    created_at: datetime
    updated_at: datetime
    card_count: int = 0


class StoredCard(BaseModel):
    id: str = Field(min_length=1)
    deck_id: str = Field(min_length=1)
    front: str
    back: str
    position: int = 0


Row = Dict[str, Any]


class DeckStore(ABC):
    backend = 'abstract'

    @abstractmethod
    def create_deck(self, owner_id: str, title: str) -> Row:
        ...

    @abstractmethod
    def update_deck(self, deck_id: str, title: str) -> Optional[Row]:
        """Set the title and bump updated_at; None when the deck is gone."""

    @abstractmethod
    def get_deck(self, deck_id: str) -> Optional[Row]:
        ...

    @abstractmethod
    def list_decks(self, owner_id: str) -> List[Row]:
        """Decks of `owner_id`, newest first, each with a `card_count`."""

    @abstractmethod
    def delete_deck(self, deck_id: str) -> bool:
        ...

    @abstractmethod
    def list_card_ids(self, deck_id: str) -> List[str]:
        ...

    @abstractmethod
    def get_cards(self, deck_id: str) -> List[Row]:
        """Card rows of a deck ordered by position."""

    @abstractmethod
    def insert_cards(self, deck_id: str, rows: Iterable[Row]) -> int:
        ...

    @abstractmethod
    def upsert_cards(self, deck_id: str, rows: Iterable[Row]) -> int:
        ...

    @abstractmethod
    def delete_cards(self, deck_id: str, card_ids: Iterable[str]) -> int:
        ...

    def ping(self) -> str:
        return 'ok'
