import os
import uuid
from contextlib import contextmanager
from typing import Iterable, List, Optional

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from cramly.storage.base import DeckStore, DeckStoreError, Row
from cramly.utils import get_logger

LOG = get_logger()

DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = int(os.getenv('DB_PORT', '5432'))
DB_NAME = os.getenv('DB_NAME', 'cramly')
DB_USER = os.getenv('DB_USER', 'postgres')
DB_PASSWORD = os.getenv('DB_PASSWORD', '')
DB_POOL_MIN = int(os.getenv('DB_POOL_MIN', '1'))
DB_POOL_MAX = int(os.getenv('DB_POOL_MAX', '5'))

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS decks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS decks_owner_created_idx ON decks (owner_id, created_at DESC);
CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    deck_id TEXT NOT NULL REFERENCES decks (id) ON DELETE CASCADE,
    front TEXT NOT NULL,
    back TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS cards_deck_position_idx ON cards (deck_id, position);
"""

DECK_COLUMNS = 'd.id, d.owner_id, d.title, d.created_at, d.updated_at, (SELECT count(*) FROM cards c WHERE c.deck_id = d.id) AS card_count'


class PostgresDeckStore(DeckStore):
    backend = 'postgres'

    def __init__(self, dsn: Optional[str] = None):
        try:
            if dsn:
                self._pool = psycopg2.pool.SimpleConnectionPool(DB_POOL_MIN, DB_POOL_MAX, dsn=dsn)
            else:
                self._pool = psycopg2.pool.SimpleConnectionPool(
                    DB_POOL_MIN,
                    DB_POOL_MAX,
                    host=DB_HOST,
                    port=DB_PORT,
                    dbname=DB_NAME,
                    user=DB_USER,
                    password=DB_PASSWORD,
                    connect_timeout=3,
                )
        except psycopg2.Error as e:
            LOG.exception('postgres_pool_failed')
            raise DeckStoreError(f'Could not connect to Postgres: {e}')
        LOG.info('postgres_store_ready', extra={'host': DB_HOST, 'db': DB_NAME})

    @contextmanager
    def _cursor(self):
        conn = self._pool.getconn()
        try:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cur
            finally:
                cur.close()
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            LOG.exception('postgres_query_failed')
            raise DeckStoreError(str(e))
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def init_schema(self):
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)
        LOG.info('postgres_schema_ready')

    def create_deck(self, owner_id: str, title: str) -> Row:
        deck_id = str(uuid.uuid4())
        with self._cursor() as cur:
            cur.execute(
                'INSERT INTO decks (id, owner_id, title) VALUES (%s, %s, %s) RETURNING id, owner_id, title, created_at, updated_at',
                (deck_id, owner_id, title),
            )
            row = dict(cur.fetchone())
        row['card_count'] = 0
        return row

    def update_deck(self, deck_id: str, title: str) -> Optional[Row]:
        with self._cursor() as cur:
            cur.execute(
                'UPDATE decks SET title = %s, updated_at = now() WHERE id = %s RETURNING id, owner_id, title, created_at, updated_at',
                (title, deck_id),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def get_deck(self, deck_id: str) -> Optional[Row]:
        with self._cursor() as cur:
            cur.execute(f'SELECT {DECK_COLUMNS} FROM decks d WHERE d.id = %s', (deck_id,))
            row = cur.fetchone()
        return dict(row) if row else None

    def list_decks(self, owner_id: str) -> List[Row]:
        with self._cursor() as cur:
            cur.execute(f'SELECT {DECK_COLUMNS} FROM decks d WHERE d.owner_id = %s ORDER BY d.created_at DESC', (owner_id,))
            return [dict(r) for r in cur.fetchall()]

    def delete_deck(self, deck_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute('DELETE FROM decks WHERE id = %s', (deck_id,))
            return cur.rowcount > 0

    def list_card_ids(self, deck_id: str) -> List[str]:
        with self._cursor() as cur:
            cur.execute('SELECT id FROM cards WHERE deck_id = %s', (deck_id,))
            return [r['id'] for r in cur.fetchall()]

    def get_cards(self, deck_id: str) -> List[Row]:
        with self._cursor() as cur:
            cur.execute('SELECT id, deck_id, front, back, position FROM cards WHERE deck_id = %s ORDER BY position', (deck_id,))
            return [dict(r) for r in cur.fetchall()]

    def insert_cards(self, deck_id: str, rows: Iterable[Row]) -> int:
        params = [(r['id'], deck_id, r['front'], r['back'], r['position']) for r in rows]
        if not params:
            return 0
        with self._cursor() as cur:
            cur.executemany('INSERT INTO cards (id, deck_id, front, back, position) VALUES (%s, %s, %s, %s, %s)', params)
        return len(params)

    def upsert_cards(self, deck_id: str, rows: Iterable[Row]) -> int:
        params = [(r['id'], deck_id, r['front'], r['back'], r['position']) for r in rows]
        if not params:
            return 0
        with self._cursor() as cur:
            cur.executemany(
                'INSERT INTO cards (id, deck_id, front, back, position) VALUES (%s, %s, %s, %s, %s) '
                'ON CONFLICT (id) DO UPDATE SET front = EXCLUDED.front, back = EXCLUDED.back, '
                'position = EXCLUDED.position, updated_at = now() WHERE cards.deck_id = EXCLUDED.deck_id',
                params,
            )
        return len(params)

    def delete_cards(self, deck_id: str, card_ids: Iterable[str]) -> int:
        ids = list(card_ids)
        if not ids:
            return 0
        with self._cursor() as cur:
            cur.execute('DELETE FROM cards WHERE deck_id = %s AND id = ANY(%s)', (deck_id, ids))
            return cur.rowcount

    def ping(self) -> str:
        try:
            with self._cursor() as cur:
                cur.execute('SELECT 1')
            return 'ok'
        except DeckStoreError as e:
            return f'error: {e}'

    def close(self):
        self._pool.closeall()
