import csv
import io
from typing import Sequence

from cramly.deck import Card, require_complete


def export_to_csv(cards: Sequence[Card]) -> str:
    """One `"front","back"` row per card, every field quoted, no header."""
    require_complete(cards)
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator='\n')
    for card in cards:
        writer.writerow([card.front, card.back])
    return buf.getvalue().rstrip('\n')
