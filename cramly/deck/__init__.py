"""
In-memory deck representation: cards with stable client-generated ids,
independent of whether they came from generation, manual entry or storage.
"""

from .models import Card, CardDraft, Deck, Rating, new_card_id
from .deck_model import (
	DeckModel,
	IncompleteCardError,
	ManualEntryError,
	validate_for_study_or_save,
	require_complete,
)

__all__ = [
	'Card',
	'CardDraft',
	'Deck',
	'Rating',
	'new_card_id',
	'DeckModel',
	'IncompleteCardError',
	'ManualEntryError',
	'validate_for_study_or_save',
	'require_complete',
]
