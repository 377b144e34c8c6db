from datetime import datetime

import pytest
from pydantic import ValidationError

from cramly.deck import (
    Card,
    CardDraft,
    Deck,
    DeckModel,
    IncompleteCardError,
    ManualEntryError,
    Rating,
    validate_for_study_or_save,
    require_complete,
)


def test_add_card_gives_unique_ids():
    model = DeckModel()
    ids = {model.add_card().id for _ in range(50)}
    assert len(ids) == 50
    assert all(c.front == '' and c.back == '' for c in model.cards)


def test_update_card_replaces_one_side():
    model = DeckModel()
    card = model.add_card()
    updated = model.update_card(card.id, 'front', 'What is osmosis?')
    assert updated.front == 'What is osmosis?'
    assert model.get_card(card.id).back == ''


def test_update_unknown_card_is_noop():
    model = DeckModel(cards=[Card(id='x', front='a', back='b')])
    assert model.update_card('missing', 'back', 'zzz') is None
    assert model.cards == [Card(id='x', front='a', back='b')]


def test_update_rejects_unknown_field():
    model = DeckModel()
    card = model.add_card()
    with pytest.raises(ValueError):
        model.update_card(card.id, 'id', 'new-id')


def test_delete_card_allows_empty_deck():
    model = DeckModel()
    card = model.add_card()
    assert model.delete_card(card.id) is True
    assert model.delete_card(card.id) is False
    assert len(model) == 0


def test_admit_drafts_assigns_fresh_ids_and_title():
    model = DeckModel(title='Old')
    model.add_card()
    cards = model.admit_drafts([CardDraft(front='Q1', back='A1'), CardDraft(front='Q2', back='A2')], title='Biology')
    assert [c.front for c in cards] == ['Q1', 'Q2']
    assert len({c.id for c in cards}) == 2
    assert model.title == 'Biology'
    model.admit_drafts([CardDraft(front='Q3', back='A3')])
    assert model.title == 'Biology'
    assert len(model) == 1


def test_apply_refinement_keeps_id():
    model = DeckModel(cards=[Card(id='k', front='old', back='old')])
    refined = model.apply_refinement('k', CardDraft(front='new q', back='new a'))
    assert refined.id == 'k'
    assert model.get_card('k').front == 'new q'
    assert model.apply_refinement('gone', CardDraft(front='x', back='y')) is None


def test_snapshot_is_a_copy():
    model = DeckModel(cards=[Card(id='1', front='a', back='b')])
    snap = model.snapshot()
    snap.clear()
    assert len(model) == 1


def test_validation_gate_positions(make_cards):
    cards = make_cards(('a', 'b'), ('c', 'd'), ('  ', 'f'))
    assert validate_for_study_or_save(cards) == 2
    with pytest.raises(IncompleteCardError) as exc:
        require_complete(cards)
    assert exc.value.position == 3
    assert validate_for_study_or_save(make_cards(('a', 'b'))) is None
    assert validate_for_study_or_save([]) is None


def test_manual_entry_rules():
    model = DeckModel()
    with pytest.raises(ManualEntryError):
        model.validate_manual_entry()
    model.set_title('Chemistry')
    with pytest.raises(ManualEntryError):
        model.validate_manual_entry()
    card = model.add_card()
    with pytest.raises(IncompleteCardError):
        model.validate_manual_entry()
    model.update_card(card.id, 'front', 'H2O')
    model.update_card(card.id, 'back', 'Water')
    model.validate_manual_entry()


def test_deck_rejects_duplicate_card_ids():
    with pytest.raises(ValidationError):
        Deck(cards=[Card(id='same', front='a', back='b'), Card(id='same', front='c', back='d')])


def test_card_requires_non_empty_id():
    with pytest.raises(ValidationError):
        Card(id='', front='a', back='b')


def test_display_title_default():
    assert Deck(title='  ').display_title(now=datetime(2024, 3, 9)) == 'New Study Deck 2024-03-09'
    assert Deck(title=' Physics ').display_title() == 'Physics'


def test_rating_retiring():
    assert Rating.GOOD.is_retiring and Rating.EASY.is_retiring
    assert not Rating.AGAIN.is_retiring and not Rating.HARD.is_retiring
    assert Rating('hard') is Rating.HARD


def test_to_deck_round_trip():
    model = DeckModel(deck_id='d1', title='T', cards=[Card(id='1', front='a', back='b')])
    deck = model.to_deck()
    assert deck.id == 'd1'
    again = DeckModel.from_deck(deck)
    assert again.cards == deck.cards
