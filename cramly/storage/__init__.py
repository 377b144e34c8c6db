"""
Deck persistence: the store interface, in-memory and Postgres backends, and
the save/load path with per-card insert, update and delete.
"""
from .base import (
	DeckStore,
	StoredDeck,
	StoredCard,
	DeckStoreError,
	DeckNotFoundError,
	DeckOwnershipError,
	OwnerRequiredError,
	SaveInProgressError,
)
from .memory_store import InMemoryDeckStore
from .sync import (
	CardDiff,
	SaveGuard,
	SAVE_GUARD,
	compute_card_diff,
	save_deck,
	load_deck,
	list_decks,
	delete_deck,
	get_deck_store,
	reset_deck_store,
)

__all__ = [
	'DeckStore',
	'StoredDeck',
	'StoredCard',
	'DeckStoreError',
	'DeckNotFoundError',
	'DeckOwnershipError',
	'OwnerRequiredError',
	'SaveInProgressError',
	'InMemoryDeckStore',
	'CardDiff',
	'SaveGuard',
	'SAVE_GUARD',
	'compute_card_diff',
	'save_deck',
	'load_deck',
	'list_decks',
	'delete_deck',
	'get_deck_store',
	'reset_deck_store',
]
