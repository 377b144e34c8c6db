import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from cramly.storage.base import DeckStore, DeckStoreError, Row
from cramly.utils import get_logger

LOG = get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDeckStore(DeckStore):
    """Process-local deck store used in development and tests.

    Card ids are unique across decks, like the primary key of the cards table.
    """
    backend = 'memory'

    def __init__(self):
        self._lock = threading.RLock()
        self._decks: Dict[str, Row] = {}
        self._cards: Dict[str, Row] = {}
        self._seq = 0

    def create_deck(self, owner_id: str, title: str) -> Row:
        with self._lock:
            now = _now()
            self._seq += 1
            row = {'id': str(uuid.uuid4()), 'owner_id': owner_id, 'title': title, 'created_at': now, 'updated_at': now, '_seq': self._seq}
            self._decks[row['id']] = row
            return self._public(row)

    def update_deck(self, deck_id: str, title: str) -> Optional[Row]:
        with self._lock:
            row = self._decks.get(deck_id)
            if row is None:
                return None
            row['title'] = title
            row['updated_at'] = _now()
            return self._public(row)

    def get_deck(self, deck_id: str) -> Optional[Row]:
        with self._lock:
            row = self._decks.get(deck_id)
            return self._public(row) if row else None

    def list_decks(self, owner_id: str) -> List[Row]:
        with self._lock:
            rows = [r for r in self._decks.values() if r['owner_id'] == owner_id]
            rows.sort(key=lambda r: (r['created_at'], r['_seq']), reverse=True)
            return [self._public(r) for r in rows]

    def delete_deck(self, deck_id: str) -> bool:
        with self._lock:
            if self._decks.pop(deck_id, None) is None:
                return False
            for card_id in [cid for cid, c in self._cards.items() if c['deck_id'] == deck_id]:
                del self._cards[card_id]
            return True

    def list_card_ids(self, deck_id: str) -> List[str]:
        return [c['id'] for c in self.get_cards(deck_id)]

    def get_cards(self, deck_id: str) -> List[Row]:
        with self._lock:
            rows = [dict(c) for c in self._cards.values() if c['deck_id'] == deck_id]
        return sorted(rows, key=lambda c: c['position'])

    def insert_cards(self, deck_id: str, rows: Iterable[Row]) -> int:
        with self._lock:
            rows = list(rows)
            for r in rows:
                if r['id'] in self._cards:
                    raise DeckStoreError(f'card id already exists: {r["id"]}')
            for r in rows:
                self._cards[r['id']] = {'id': r['id'], 'deck_id': deck_id, 'front': r['front'], 'back': r['back'], 'position': r['position']}
            return len(rows)

    def upsert_cards(self, deck_id: str, rows: Iterable[Row]) -> int:
        count = 0
        with self._lock:
            for r in rows:
                existing = self._cards.get(r['id'])
                if existing is not None and existing['deck_id'] != deck_id:
                    # same rule as the conflict clause of the SQL store
                    continue
                self._cards[r['id']] = {'id': r['id'], 'deck_id': deck_id, 'front': r['front'], 'back': r['back'], 'position': r['position']}
                count += 1
        return count

    def delete_cards(self, deck_id: str, card_ids: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for cid in card_ids:
                c = self._cards.get(cid)
                if c is not None and c['deck_id'] == deck_id:
                    del self._cards[cid]
                    removed += 1
        return removed

    def _public(self, row: Row) -> Row:
        out = {k: v for k, v in row.items() if not k.startswith('_')}
        out['card_count'] = sum(1 for c in self._cards.values() if c['deck_id'] == row['id'])
        return out
