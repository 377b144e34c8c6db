"""Save and load decks against a DeckStore.

A save never deletes every card and re-inserts the deck. It compares the ids
already stored with the ids in the working set and applies three steps, in
this order:

1. delete stored cards whose id is no longer in the deck
2. insert cards whose id is new
3. upsert cards whose id already exists (content and position)

Positions follow the display order of the deck being saved. A deck created by
a save whose card sync then fails is removed again, so retrying the unsaved
deck does not leave an empty copy behind.
"""
from __future__ import annotations

import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError

from cramly.deck import Card, Deck, require_complete
from cramly.storage.base import (
    DeckStore,
    DeckStoreError,
    DeckNotFoundError,
    DeckOwnershipError,
    OwnerRequiredError,
    SaveInProgressError,
    StoredCard,
    StoredDeck,
)
from cramly.utils import SessionContext, get_logger, log_deck_sync

LOG = get_logger()

DECK_STORE_BACKEND = os.getenv('DECK_STORE_BACKEND', 'memory').lower()


@dataclass
class CardDiff:
    to_insert: List[Card] = field(default_factory=list)
    to_update: List[Card] = field(default_factory=list)
    to_delete: List[str] = field(default_factory=list)


def compute_card_diff(stored_ids: Iterable[str], cards: Sequence[Card]) -> CardDiff:
    stored = set(stored_ids)
    current = {c.id for c in cards}
    diff = CardDiff()
    for card in cards:
        if card.id in stored:
            diff.to_update.append(card)
        else:
            diff.to_insert.append(card)
    diff.to_delete = sorted(stored - current)
    return diff


class SaveGuard:
    """Refuses a second save of the same deck while one is in flight."""

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight = set()

    @contextmanager
    def hold(self, deck_id: Optional[str]):
        if deck_id is None:
            yield
            return
        with self._lock:
            if deck_id in self._in_flight:
                raise SaveInProgressError(f'A save of deck {deck_id} is already in progress')
            self._in_flight.add(deck_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(deck_id)

    def is_saving(self, deck_id: str) -> bool:
        with self._lock:
            return deck_id in self._in_flight


SAVE_GUARD = SaveGuard()


def _require_owner(ctx: SessionContext) -> str:
    if not ctx.is_authenticated:
        raise OwnerRequiredError('Sign in to save and load decks')
    return ctx.user_id


def _owned_deck(store: DeckStore, ctx: SessionContext, deck_id: str) -> StoredDeck:
    owner_id = _require_owner(ctx)
    row = store.get_deck(deck_id)
    if row is None:
        raise DeckNotFoundError(f'Deck not found: {deck_id}')
    try:
        deck = StoredDeck.model_validate(row)
    except ValidationError as e:
        raise DeckStoreError(f'Malformed deck row {deck_id}: {e}')
    if deck.owner_id != owner_id:
        raise DeckOwnershipError(f'Deck {deck_id} belongs to another user')
    return deck


def _card_rows(cards: Sequence[Card], positions: dict) -> List[dict]:
    return [{'id': c.id, 'front': c.front, 'back': c.back, 'position': positions[c.id]} for c in cards]


def _guard_key(deck: Deck, owner_id: str) -> Optional[str]:
    if deck.id:
        return deck.id
    # card ids are unique across decks, so the first one names an unsaved deck
    if deck.cards:
        return f'new:{owner_id}:{deck.cards[0].id}'
    return None


def _sync_cards(store: DeckStore, deck_id: str, cards: Sequence[Card]) -> CardDiff:
    diff = compute_card_diff(store.list_card_ids(deck_id), cards)
    positions = {c.id: i for i, c in enumerate(cards)}
    store.delete_cards(deck_id, diff.to_delete)
    store.insert_cards(deck_id, _card_rows(diff.to_insert, positions))
    store.upsert_cards(deck_id, _card_rows(diff.to_update, positions))
    return diff


def _discard_new_deck(store: DeckStore, deck_id: str) -> None:
    try:
        store.delete_deck(deck_id)
    except DeckStoreError as e:
        LOG.error('new_deck_cleanup_failed', extra={'deck_id': deck_id, 'error': str(e)})
    else:
        LOG.warning('new_deck_discarded', extra={'deck_id': deck_id})


def save_deck(store: DeckStore, ctx: SessionContext, deck: Deck, guard: Optional[SaveGuard] = None) -> Deck:
    """Create or update `deck` for the caller and sync its cards.

    Raises IncompleteCardError before touching the store when a card has an
    empty side.
    """
    require_complete(deck.cards)
    owner_id = _require_owner(ctx)
    guard = guard or SAVE_GUARD
    title = deck.display_title()
    start = time.time()

    with guard.hold(_guard_key(deck, owner_id)):
        created = False
        if deck.id:
            _owned_deck(store, ctx, deck.id)
            if store.update_deck(deck.id, title) is None:
                raise DeckNotFoundError(f'Deck not found: {deck.id}')
            deck_id = deck.id
        else:
            deck_id = store.create_deck(owner_id, title)['id']
            created = True

        try:
            diff = _sync_cards(store, deck_id, deck.cards)
        except Exception:
            if created:
                # the caller never saw this id
                _discard_new_deck(store, deck_id)
            raise

    log_deck_sync(deck_id, len(diff.to_insert), len(diff.to_update), len(diff.to_delete), int((time.time() - start) * 1000), created=created)
    return Deck(id=deck_id, title=title, cards=[Card(id=c.id, front=c.front, back=c.back) for c in deck.cards])


def load_deck(store: DeckStore, ctx: SessionContext, deck_id: str) -> Deck:
    stored = _owned_deck(store, ctx, deck_id)
    cards: List[Card] = []
    for row in store.get_cards(deck_id):
        try:
            sc = StoredCard.model_validate(row)
        except ValidationError as e:
            LOG.warning('malformed_card_row', extra={'deck_id': deck_id, 'error': str(e)})
            raise DeckStoreError(f'Malformed card row in deck {deck_id}')
        cards.append(Card(id=sc.id, front=sc.front, back=sc.back))
    return Deck(id=stored.id, title=stored.title, cards=cards)


def list_decks(store: DeckStore, ctx: SessionContext) -> List[StoredDeck]:
    owner_id = _require_owner(ctx)
    return [StoredDeck.model_validate(r) for r in store.list_decks(owner_id)]


def delete_deck(store: DeckStore, ctx: SessionContext, deck_id: str, guard: Optional[SaveGuard] = None) -> None:
    _owned_deck(store, ctx, deck_id)
    with (guard or SAVE_GUARD).hold(deck_id):
        store.delete_deck(deck_id)
    LOG.info('deck_deleted', extra={'deck_id': deck_id})


_STORE: Optional[DeckStore] = None


def get_deck_store() -> DeckStore:
    global _STORE
    if _STORE is None:
        if DECK_STORE_BACKEND == 'postgres':
            from cramly.storage.postgres_store import PostgresDeckStore
            store = PostgresDeckStore()
            store.init_schema()
            _STORE = store
        elif DECK_STORE_BACKEND == 'memory':
            from cramly.storage.memory_store import InMemoryDeckStore
            _STORE = InMemoryDeckStore()
        else:
            raise DeckStoreError(f'Unknown DECK_STORE_BACKEND: {DECK_STORE_BACKEND}')
        LOG.info('deck_store_selected', extra={'backend': _STORE.backend})
    return _STORE


def reset_deck_store(store: Optional[DeckStore] = None) -> None:
    global _STORE
    _STORE = store
