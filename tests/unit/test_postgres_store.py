from datetime import datetime, timezone

import psycopg2
import pytest

from cramly.deck import Card, Deck
from cramly.storage import save_deck, load_deck, DeckStoreError
from cramly.storage.postgres_store import PostgresDeckStore
from cramly.utils import SessionContext

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)
OWNER = SessionContext(user_id='user-1')


def deck_row(deck_id='d1', owner='user-1', title='Bio'):
    return {'id': deck_id, 'owner_id': owner, 'title': title, 'created_at': NOW, 'updated_at': NOW, 'card_count': 3}


def test_init_schema_creates_tables(mock_postgres_pool):
    store = PostgresDeckStore()
    store.init_schema()
    sql = mock_postgres_pool.cursor.queries[0][0]
    assert 'CREATE TABLE IF NOT EXISTS decks' in sql
    assert 'CREATE TABLE IF NOT EXISTS cards' in sql
    assert mock_postgres_pool.conn.commits == 1


def test_save_runs_delete_then_insert_then_upsert(mock_postgres_pool):
    cur = mock_postgres_pool.cursor
    cur.results = [
        deck_row(),                      # get_deck
        deck_row(),                      # update_deck RETURNING
        [{'id': '1'}, {'id': '2'}, {'id': '3'}],  # list_card_ids
    ]
    store = PostgresDeckStore()
    cards = [Card(id=i, front=f'Q{i}', back=f'A{i}') for i in ('2', '3', '4')]
    save_deck(store, OWNER, Deck(id='d1', title='Bio', cards=cards))

    statements = [q for q, _ in cur.queries]
    delete_idx = next(i for i, q in enumerate(statements) if q.startswith('DELETE FROM cards'))
    insert_idx = next(i for i, q in enumerate(statements) if q.startswith('INSERT INTO cards') and 'ON CONFLICT' not in q)
    upsert_idx = next(i for i, q in enumerate(statements) if 'ON CONFLICT (id) DO UPDATE' in q)
    assert delete_idx < insert_idx < upsert_idx

    assert cur.queries[delete_idx][1] == ('d1', ['1'])
    assert cur.queries[insert_idx][1] == [('4', 'd1', 'Q4', 'A4', 2)]
    assert [p[0] for p in cur.queries[upsert_idx][1]] == ['2', '3']
    assert not any(q.startswith('DELETE FROM decks') for q in statements)


def test_load_converts_rows(mock_postgres_pool):
    cur = mock_postgres_pool.cursor
    cur.results = [
        deck_row(),
        [
            {'id': 'a', 'deck_id': 'd1', 'front': 'F1', 'back': 'B1', 'position': 0},
            {'id': 'b', 'deck_id': 'd1', 'front': 'F2', 'back': 'B2', 'position': 1},
        ],
    ]
    deck = load_deck(PostgresDeckStore(), OWNER, 'd1')
    assert deck.title == 'Bio'
    assert [(c.id, c.front) for c in deck.cards] == [('a', 'F1'), ('b', 'F2')]


def test_driver_errors_become_store_errors(mock_postgres_pool):
    store = PostgresDeckStore()

    def boom(q, p=None):
        raise psycopg2.OperationalError('connection lost')

    mock_postgres_pool.cursor.execute = boom
    with pytest.raises(DeckStoreError):
        store.get_deck('d1')
    assert mock_postgres_pool.conn.rollbacks == 1
    assert store.ping().startswith('error')


def test_empty_batches_skip_the_database(mock_postgres_pool):
    store = PostgresDeckStore()
    assert store.insert_cards('d1', []) == 0
    assert store.upsert_cards('d1', []) == 0
    assert store.delete_cards('d1', []) == 0
    assert mock_postgres_pool.cursor.queries == []
