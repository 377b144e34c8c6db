from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from cramly.deck.models import Card, CardDraft, Deck, new_card_id
from cramly.utils import get_logger

LOG = get_logger()

EDITABLE_FIELDS = ('front', 'back')


class IncompleteCardError(Exception):
    """A card with an empty side blocked a study or save transition.

    `position` is 1-based, the way it is shown to the user.
    """

    def __init__(self, position: int):
        self.position = position
        super().__init__(f'Card {position} is incomplete. Both sides must have text.')


class ManualEntryError(Exception):
    pass


def validate_for_study_or_save(cards: Sequence[Card]) -> Optional[int]:
    """Return the 0-based index of the first incomplete card, or None."""
    for index, card in enumerate(cards):
        if not card.is_complete():
            return index
    return None


def require_complete(cards: Sequence[Card]) -> None:
    index = validate_for_study_or_save(cards)
    if index is not None:
        raise IncompleteCardError(index + 1)


class DeckModel:
    """The editable set of cards for the deck currently being worked on."""

    def __init__(self, deck_id: Optional[str] = None, title: Optional[str] = None, cards: Optional[Iterable[Card]] = None):
        self.deck_id = deck_id
        self.title = title
        self._cards: List[Card] = list(cards or [])

    @classmethod
    def from_deck(cls, deck: Deck) -> 'DeckModel':
        return cls(deck_id=deck.id, title=deck.title, cards=deck.cards)

    @property
    def cards(self) -> List[Card]:
        return list(self._cards)

    def __len__(self) -> int:
        return len(self._cards)

    def _index_of(self, card_id: str) -> Optional[int]:
        for i, card in enumerate(self._cards):
            if card.id == card_id:
                return i
        return None

    def get_card(self, card_id: str) -> Optional[Card]:
        i = self._index_of(card_id)
        return self._cards[i] if i is not None else None

    def add_card(self) -> Card:
        card = Card(id=new_card_id())
        self._cards.append(card)
        return card

    def update_card(self, card_id: str, field: str, value: str) -> Optional[Card]:
        if field not in EDITABLE_FIELDS:
            raise ValueError(f'field must be one of {EDITABLE_FIELDS}, got {field!r}')
        i = self._index_of(card_id)
        if i is None:
            # stale reference from the caller, nothing to do
            return None
        updated = self._cards[i].model_copy(update={field: value})
        self._cards[i] = updated
        return updated

    def delete_card(self, card_id: str) -> bool:
        i = self._index_of(card_id)
        if i is None:
            return False
        del self._cards[i]
        return True

    def replace_all(self, cards: Iterable[Card], title: Optional[str] = None) -> None:
        self._cards = list(cards)
        if title is not None:
            self.title = title

    def admit_drafts(self, drafts: Iterable[CardDraft], title: Optional[str] = None) -> List[Card]:
        """Give generated pairs fresh ids and make them the deck's cards."""
        cards = [Card(id=new_card_id(), front=d.front, back=d.back) for d in drafts]
        self.replace_all(cards, title=title)
        LOG.info('deck_drafts_admitted', extra={'card_count': len(cards)})
        return self.cards

    def apply_refinement(self, card_id: str, draft: CardDraft) -> Optional[Card]:
        i = self._index_of(card_id)
        if i is None:
            return None
        refined = self._cards[i].model_copy(update={'front': draft.front, 'back': draft.back})
        self._cards[i] = refined
        return refined

    def set_title(self, title: Optional[str]) -> None:
        self.title = title

    def snapshot(self) -> List[Card]:
        return list(self._cards)

    def validate_manual_entry(self) -> None:
        """Extra rules of the manual entry form: a title and at least one card."""
        if not (self.title or '').strip():
            raise ManualEntryError('Please enter a deck title.')
        if not self._cards:
            raise ManualEntryError('You must have at least one card.')
        require_complete(self._cards)

    def to_deck(self) -> Deck:
        return Deck(id=self.deck_id, title=self.title, cards=self.snapshot())
