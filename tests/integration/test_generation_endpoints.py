import pymupdf
import pytest
from fastapi.testclient import TestClient

import main as app_main
from cramly.generation import LLMTimeoutError, LLMAPIError, LLMValidationError


@pytest.fixture
def client(memory_store, install_fake_llm):
    return TestClient(app_main.app)


def blank_pdf_bytes():
    doc = pymupdf.open()
    doc.new_page()
    data = doc.tobytes()
    doc.close()
    return data


@pytest.mark.integration
def test_generate_assigns_ids(client, install_fake_llm):
    r = client.post('/flashcards/generate', json={'text': 'Cells and organelles', 'count': 3})
    assert r.status_code == 200
    body = r.json()
    assert body['success'] is True
    assert body['title'] == 'Cell Biology'
    assert len(body['cards']) == 3
    assert len({c['id'] for c in body['cards']}) == 3
    assert install_fake_llm.calls[0]['request_id'] == body['request_id']


@pytest.mark.integration
def test_user_title_wins(client):
    body = client.post('/flashcards/generate', json={'text': 'notes', 'title': 'Mine'}).json()
    assert body['title'] == 'Mine'


@pytest.mark.integration
def test_generate_empty_text(client, install_fake_llm):
    r = client.post('/flashcards/generate', json={'text': '   '})
    assert r.status_code == 400
    assert install_fake_llm.calls == []


@pytest.mark.integration
@pytest.mark.parametrize('error, status', [
    (LLMTimeoutError('slow'), 504),
    (LLMAPIError('down'), 502),
    (LLMValidationError('junk'), 422),
])
def test_generate_failures(client, install_fake_llm, error, status):
    install_fake_llm.queue(error)
    r = client.post('/flashcards/generate', json={'text': 'notes'})
    assert r.status_code == status
    assert r.json()['success'] is False


@pytest.mark.integration
def test_generate_from_text_file(client, install_fake_llm):
    files = {'file': ('notes.txt', b'The heart pumps blood.', 'text/plain')}
    r = client.post('/flashcards/generate-from-file', files=files, data={'count': '5'})
    assert r.status_code == 200
    assert 'The heart pumps blood.' in install_fake_llm.calls[0]['user']
    assert 'Generate 5 effective flashcards' in install_fake_llm.calls[0]['user']


@pytest.mark.integration
def test_failed_extraction_never_generates(client, install_fake_llm):
    r = client.post('/flashcards/generate-from-file', files={'file': ('blank.pdf', blank_pdf_bytes(), 'application/pdf')})
    assert r.status_code == 422
    assert r.json()['file_kind'] == 'pdf'
    r = client.post('/flashcards/generate-from-file', files={'file': ('deck.pptx', b'PK..', 'application/octet-stream')})
    assert r.status_code == 400
    assert install_fake_llm.calls == []


@pytest.mark.integration
def test_extract_endpoint(client):
    r = client.post('/extract', files={'file': ('notes.md', '# Title\nSome *notes*'.encode('utf-8'), 'text/markdown')})
    assert r.status_code == 200
    body = r.json()
    assert body['file_kind'] == 'text'
    assert body['text'].startswith('# Title')


@pytest.mark.integration
def test_refine_keeps_card_id(client):
    card = {'id': 'keep-me', 'front': 'Mitochondria?', 'back': 'Powerhouse'}
    r = client.post('/flashcards/refine', json={'card': card, 'instruction': 'Be more precise'})
    assert r.status_code == 200
    refined = r.json()['card']
    assert refined['id'] == 'keep-me'
    assert refined['front'] == 'Which organelle produces ATP?'


@pytest.mark.integration
def test_refine_failure_returns_original(client, install_fake_llm):
    install_fake_llm.queue(LLMAPIError('down'))
    card = {'id': 'k', 'front': 'q', 'back': 'a'}
    r = client.post('/flashcards/refine', json={'card': card, 'instruction': 'simplify'})
    assert r.status_code == 502
    assert r.json()['card'] == {'id': 'k', 'front': 'q', 'back': 'a', 'status': None}
