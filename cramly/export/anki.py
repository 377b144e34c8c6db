import hashlib
import html
import os
import re
import tempfile
from typing import Sequence

import genanki

from cramly.deck import Card, require_complete
from cramly.utils import get_logger

LOG = get_logger()

DEFAULT_DECK_NAME = 'Cramly Deck'


class ExportError(Exception):
    pass


def _stable_id(seed: str) -> int:
    # same deck name, same ids
    return (1 << 30) + int(hashlib.sha1(seed.encode('utf-8')).hexdigest()[:8], 16) % (1 << 30)


def export_filename(deck_name: str, extension: str = 'apkg') -> str:
    name = re.sub(r'\s+', '-', (deck_name or DEFAULT_DECK_NAME).strip()) or re.sub(r'\s+', '-', DEFAULT_DECK_NAME)
    return f'{name}.{extension}'


def _basic_model(deck_name: str) -> genanki.Model:
    return genanki.Model(
        _stable_id(f'model:{deck_name}'),
        'Cramly Basic',
        fields=[{'name': 'Front'}, {'name': 'Back'}],
        templates=[{
            'name': 'Card 1',
            'qfmt': '{{Front}}',
            'afmt': '{{FrontSide}}<hr id="answer">{{Back}}',
        }],
    )


def _to_html(text: str) -> str:
    return html.escape(text).replace('\n', '<br>')


def export_to_anki(cards: Sequence[Card], deck_name: str = DEFAULT_DECK_NAME) -> bytes:
    """Build an Anki .apkg package for `cards` and return its bytes."""
    require_complete(cards)
    deck_name = (deck_name or '').strip() or DEFAULT_DECK_NAME
    model = _basic_model(deck_name)
    deck = genanki.Deck(_stable_id(f'deck:{deck_name}'), deck_name)
    for card in cards:
        deck.add_note(genanki.Note(model=model, fields=[_to_html(card.front), _to_html(card.back)], guid=genanki.guid_for(card.id)))

    fd, path = tempfile.mkstemp(suffix='.apkg')
    os.close(fd)
    try:
        genanki.Package(deck).write_to_file(path)
        with open(path, 'rb') as f:
            data = f.read()
    except OSError as e:
        LOG.exception('anki_export_failed')
        raise ExportError(f'Failed to export to Anki: {e}')
    finally:
        if os.path.exists(path):
            os.remove(path)
    LOG.info('anki_export', extra={'deck_name': deck_name, 'card_count': len(cards), 'size_bytes': len(data)})
    return data
