import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, List, Literal
from urllib.parse import quote

from fastapi import FastAPI, Request, Response, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cramly.deck import Card, Deck, DeckModel, Rating, IncompleteCardError, validate_for_study_or_save
from cramly.generation import (
    CardGenerator,
    CardRefiner,
    LLMClient,
    LLMError,
    CardGenerationError,
    EmptySourceTextError,
    CardGenerationAPIError,
    CardGenerationTimeoutError,
    CardGenerationValidationError,
    CardRefineError,
)
from cramly.ocr import extract_text, ExtractionResult, TextExtractionError, UnsupportedFileTypeError, NoTextExtractedError
from cramly.export import export_to_anki, export_to_csv, export_filename, ExportError, DEFAULT_DECK_NAME
from cramly.storage import (
    DeckStoreError,
    DeckNotFoundError,
    DeckOwnershipError,
    OwnerRequiredError,
    SaveInProgressError,
    get_deck_store,
    save_deck,
    load_deck,
    list_decks,
    delete_deck,
)
from cramly.study import (
    StudyEngine,
    StudySessionStore,
    StudySessionError,
    StudySessionNotFoundError,
    EmptyQueueError,
    InvalidTransitionError,
)
from cramly.utils import FileHandler, FileValidationError, SessionContext, get_logger, set_request_context, log_request, log_study_event

LOG = get_logger()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    HOST: str = '0.0.0.0'
    PORT: int = 8000
    ENVIRONMENT: str = 'development'
    LOG_LEVEL: str = 'INFO'
    CORS_ORIGIN: str = '*'
    DECK_STORE_REQUIRED_FOR_READY: bool = True
    REDIS_REQUIRED_FOR_READY: bool = False
    OPENAI_REQUIRED_FOR_READY: bool = False


settings = Settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    LOG.info('Cramly service starting', extra={'environment': settings.ENVIRONMENT})
    try:
        get_deck_store()
    except DeckStoreError as e:
        LOG.warning('deck_store_warmup_failed', extra={'error': str(e)})
    StudySessionStore.get_instance()
    try:
        LLMClient.get_instance()
    except LLMError as e:
        LOG.warning('llm_client_warmup_failed', extra={'error': str(e)})
    yield
    LOG.info('Cramly service shutting down')


app = FastAPI(title='Cramly', version='1.0.0', description='Flashcard generation and study service', lifespan=lifespan)

origins = [o.strip() for o in settings.CORS_ORIGIN.split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    # prefer incoming X-Request-ID header for cross-service tracing
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id, request.headers.get('x-user-id'))
    start = time.time()
    LOG.info('http_request_start', extra={'method': request.method, 'path': request.url.path, 'client': request.client.host if request.client else None})
    try:
        response: Response = await call_next(request)
    except Exception:
        LOG.exception('Unhandled exception in request')
        body = {'success': False, 'error': 'Internal server error', 'details': None, 'request_id': request_id}
        response = JSONResponse(status_code=500, content=body)
    duration = int((time.time() - start) * 1000)
    log_request(request_id, request.method, request.url.path, response.status_code, duration, ip=request.client.host if request.client else None)
    response.headers['X-Request-ID'] = request_id
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', None) or os.urandom(8).hex()


def _context(request: Request) -> SessionContext:
    return SessionContext(user_id=request.headers.get('x-user-id') or None, request_id=_request_id(request))


def _fail(status_code: int, error: str, details, request_id: str, **extra) -> JSONResponse:
    body = {'success': False, 'error': error, 'details': details, 'request_id': request_id}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def _incomplete(e: IncompleteCardError, request_id: str) -> JSONResponse:
    return _fail(400, 'Incomplete card', str(e), request_id, position=e.position)


def _store_failure(e: DeckStoreError, request_id: str) -> JSONResponse:
    if isinstance(e, OwnerRequiredError):
        return _fail(401, 'Sign in required', str(e), request_id)
    if isinstance(e, DeckOwnershipError):
        return _fail(403, 'Not the owner of this deck', str(e), request_id)
    if isinstance(e, DeckNotFoundError):
        return _fail(404, 'Deck not found', str(e), request_id)
    if isinstance(e, SaveInProgressError):
        return _fail(409, 'Save already in progress', str(e), request_id)
    LOG.exception('deck_store_error')
    return _fail(500, 'Deck storage failed', str(e), request_id)


def _study_failure(e: StudySessionError, request_id: str) -> JSONResponse:
    if isinstance(e, StudySessionNotFoundError):
        return _fail(404, 'Study session not found', str(e), request_id)
    if isinstance(e, (EmptyQueueError, InvalidTransitionError)):
        return _fail(409, 'Invalid study action', str(e), request_id)
    LOG.exception('study_session_error')
    return _fail(500, 'Study session failed', str(e), request_id)


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat(), 'service': 'cramly'}


def _check_deck_store():
    try:
        return get_deck_store().ping()
    except DeckStoreError as e:
        return f'error: {e}'


def _check_openai():
    if not os.getenv('OPENAI_API_KEY'):
        return 'error: no openai key' if settings.OPENAI_REQUIRED_FOR_READY else 'warn: no openai key'
    return 'ok'


@app.get('/ready')
async def ready():
    services = {
        'deck_store': _check_deck_store(),
        'study_sessions': StudySessionStore.get_instance().ping(),
        'openai': _check_openai(),
    }
    ready_ok = True
    if settings.DECK_STORE_REQUIRED_FOR_READY and services['deck_store'].startswith('error'):
        ready_ok = False
    if settings.REDIS_REQUIRED_FOR_READY and services['study_sessions'] != 'ok':
        ready_ok = False
    if settings.OPENAI_REQUIRED_FOR_READY and services['openai'].startswith('error'):
        ready_ok = False
    status_code = 200 if ready_ok else 503
    return JSONResponse(status_code=status_code, content={'status': 'ready' if ready_ok else 'not ready', 'services': services})


# ---------------------------------------------------------------- extraction

def _extract_upload(file: UploadFile, request_id: str) -> ExtractionResult:
    handler = FileHandler()
    path = handler.save_upload(file.filename, file.file)
    try:
        return extract_text(path, filename=file.filename, request_id=request_id)
    finally:
        handler.cleanup_temp_file(path)


def _extraction_failure(e: Exception, request_id: str) -> JSONResponse:
    if isinstance(e, (FileValidationError, UnsupportedFileTypeError)):
        return _fail(400, 'Invalid upload', str(e), request_id)
    if isinstance(e, NoTextExtractedError):
        return _fail(422, 'No text found', str(e), request_id, file_kind=e.file_kind)
    LOG.exception('text_extraction_failed')
    return _fail(422, 'Text extraction failed', str(e), request_id, file_kind=getattr(e, 'file_kind', None))


@app.post('/extract')
async def extract_endpoint(request: Request, file: UploadFile = File(...)):
    request_id = _request_id(request)
    try:
        result = _extract_upload(file, request_id)
    except (FileValidationError, TextExtractionError) as e:
        return _extraction_failure(e, request_id)
    return {'success': True, **result.to_dict(), 'request_id': request_id}


# ---------------------------------------------------------------- generation

class GenerateRequest(BaseModel):
    text: str = Field(..., description='Study material to turn into flashcards')
    count: Optional[int] = Field(None, description='Number of cards to ask for (clamped)')
    title: Optional[str] = None


class RefineRequest(BaseModel):
    card: Card
    instruction: str = Field(..., min_length=1)


def _generate(text: str, count: Optional[int], title: Optional[str], request_id: str):
    start = time.time()
    try:
        result = CardGenerator.get_instance().generate_cards(text, count=count, request_id=request_id)
    except EmptySourceTextError as e:
        return _fail(400, 'No text provided', str(e), request_id)
    except CardGenerationValidationError as e:
        LOG.exception('flashcard_validation_error')
        return _fail(422, 'Model output could not be used', str(e), request_id)
    except CardGenerationTimeoutError as e:
        LOG.exception('flashcard_timeout')
        return _fail(504, 'LLM timeout', str(e), request_id)
    except CardGenerationAPIError as e:
        LOG.exception('flashcard_api_error')
        return _fail(502, 'LLM API error', str(e), request_id)
    except CardGenerationError as e:
        LOG.exception('flashcard_generation_failed')
        return _fail(500, 'Flashcard generation failed', str(e), request_id)
    model = DeckModel()
    cards = model.admit_drafts(result.drafts, title=title or result.title)
    duration_ms = int((time.time() - start) * 1000)
    return {
        'success': True,
        'title': model.title,
        'cards': [c.model_dump(mode='json') for c in cards],
        'metadata': {'processing_time_ms': duration_ms, 'model_used': os.getenv('OPENAI_MODEL')},
        'request_id': request_id,
    }


@app.post('/flashcards/generate')
async def generate_endpoint(req: GenerateRequest, request: Request):
    request_id = _request_id(request)
    LOG.info('flashcard_generation_start', extra={'count': req.count, 'text_length': len(req.text)})
    return _generate(req.text, req.count, req.title, request_id)


@app.post('/flashcards/generate-from-file')
async def generate_from_file_endpoint(request: Request, file: UploadFile = File(...), count: Optional[int] = Form(None), title: Optional[str] = Form(None)):
    request_id = _request_id(request)
    try:
        extracted = _extract_upload(file, request_id)
    except (FileValidationError, TextExtractionError) as e:
        # generation never runs on a failed extraction
        return _extraction_failure(e, request_id)
    return _generate(extracted.text, count, title, request_id)


@app.post('/flashcards/refine')
async def refine_endpoint(req: RefineRequest, request: Request):
    request_id = _request_id(request)
    try:
        draft = CardRefiner.get_instance().refine_card(req.card, req.instruction, request_id=request_id)
    except CardRefineError as e:
        return _fail(502, 'Refine failed', str(e), request_id, card=req.card.model_dump(mode='json'))
    refined = DeckModel(cards=[req.card]).apply_refinement(req.card.id, draft)
    return {'success': True, 'card': refined.model_dump(mode='json'), 'request_id': request_id}


# ---------------------------------------------------------------- decks

class CardsRequest(BaseModel):
    cards: List[Card] = Field(default_factory=list)


class ExportRequest(BaseModel):
    title: Optional[str] = None
    cards: List[Card] = Field(default_factory=list)
    format: Literal['anki', 'csv'] = 'anki'


@app.post('/decks/validate')
async def validate_deck_endpoint(req: CardsRequest, request: Request):
    request_id = _request_id(request)
    index = validate_for_study_or_save(req.cards)
    if index is None:
        return {'success': True, 'valid': True, 'position': None, 'request_id': request_id}
    e = IncompleteCardError(index + 1)
    return {'success': True, 'valid': False, 'position': e.position, 'details': str(e), 'request_id': request_id}


@app.get('/decks')
async def list_decks_endpoint(request: Request):
    ctx = _context(request)
    try:
        decks = list_decks(get_deck_store(), ctx)
    except DeckStoreError as e:
        return _store_failure(e, ctx.request_id)
    return {'success': True, 'decks': [d.model_dump(mode='json') for d in decks], 'request_id': ctx.request_id}


@app.post('/decks')
async def save_deck_endpoint(deck: Deck, request: Request):
    ctx = _context(request)
    try:
        saved = save_deck(get_deck_store(), ctx, deck)
    except IncompleteCardError as e:
        return _incomplete(e, ctx.request_id)
    except DeckStoreError as e:
        return _store_failure(e, ctx.request_id)
    return {'success': True, 'deck': saved.model_dump(mode='json'), 'request_id': ctx.request_id}


@app.get('/decks/{deck_id}')
async def get_deck_endpoint(deck_id: str, request: Request):
    ctx = _context(request)
    try:
        deck = load_deck(get_deck_store(), ctx, deck_id)
    except DeckStoreError as e:
        return _store_failure(e, ctx.request_id)
    return {'success': True, 'deck': deck.model_dump(mode='json'), 'request_id': ctx.request_id}


@app.delete('/decks/{deck_id}')
async def delete_deck_endpoint(deck_id: str, request: Request):
    ctx = _context(request)
    try:
        delete_deck(get_deck_store(), ctx, deck_id)
    except DeckStoreError as e:
        return _store_failure(e, ctx.request_id)
    return {'success': True, 'deck_id': deck_id, 'request_id': ctx.request_id}


@app.post('/decks/export')
async def export_deck_endpoint(req: ExportRequest, request: Request):
    request_id = _request_id(request)
    deck_name = (req.title or '').strip() or DEFAULT_DECK_NAME
    try:
        if req.format == 'csv':
            content = export_to_csv(req.cards).encode('utf-8')
            media_type = 'text/csv; charset=utf-8'
            filename = export_filename(deck_name, 'csv')
        else:
            content = export_to_anki(req.cards, deck_name)
            media_type = 'application/octet-stream'
            filename = export_filename(deck_name, 'apkg')
    except IncompleteCardError as e:
        return _incomplete(e, request_id)
    except ExportError as e:
        return _fail(500, 'Export failed', str(e), request_id)
    headers = {'Content-Disposition': f"attachment; filename*=UTF-8''{quote(filename)}", 'X-Request-ID': request_id}
    return Response(content=content, media_type=media_type, headers=headers)


# ---------------------------------------------------------------- study

class StartSessionRequest(BaseModel):
    deck_id: Optional[str] = None
    cards: Optional[List[Card]] = None
    title: Optional[str] = None

    @model_validator(mode='after')
    def _one_source(self) -> 'StartSessionRequest':
        if (self.deck_id is None) == (self.cards is None):
            raise ValueError('Provide exactly one of deck_id or cards')
        return self


class RateRequest(BaseModel):
    rating: Rating


def _session_body(session_id: str, engine: StudyEngine, record: dict, request_id: str) -> dict:
    active = engine.active_card
    return {
        'success': True,
        'session_id': session_id,
        'state': engine.state.value,
        'active_card': active.model_dump(mode='json') if active else None,
        'is_flipped': engine.is_flipped,
        'queue_length': len(engine.queue),
        'stats': engine.stats().to_dict(),
        'last_ratings': {k: v.value for k, v in engine.last_ratings.items()},
        'deck_id': record.get('deck_id'),
        'title': record.get('title'),
        'request_id': request_id,
    }


def _record_event(session_id: str, event: str, engine: StudyEngine):
    log_study_event(session_id, event, engine.state.value, len(engine.queue), engine.completed_count)


@app.post('/study/sessions')
async def start_session_endpoint(req: StartSessionRequest, request: Request):
    ctx = _context(request)
    title = req.title
    try:
        if req.deck_id is not None:
            deck = load_deck(get_deck_store(), ctx, req.deck_id)
            cards, title = deck.cards, title or deck.title
        else:
            cards = req.cards
        engine = StudyEngine()
        engine.start(cards)
    except IncompleteCardError as e:
        return _incomplete(e, ctx.request_id)
    except DeckStoreError as e:
        return _store_failure(e, ctx.request_id)
    session_id = str(uuid.uuid4())
    store = StudySessionStore.get_instance()
    record = store.create_session(session_id, engine, cards, deck_id=req.deck_id, user_id=ctx.user_id, title=title)
    _record_event(session_id, 'start', engine)
    return _session_body(session_id, engine, record, ctx.request_id)


@app.get('/study/sessions/{session_id}')
async def get_session_endpoint(session_id: str, request: Request):
    request_id = _request_id(request)
    store = StudySessionStore.get_instance()
    try:
        record = store.require_session(session_id)
    except StudySessionError as e:
        return _study_failure(e, request_id)
    return _session_body(session_id, StudyEngine.from_dict(record['engine']), record, request_id)


@app.delete('/study/sessions/{session_id}')
async def end_session_endpoint(session_id: str, request: Request):
    request_id = _request_id(request)
    if not StudySessionStore.get_instance().delete_session(session_id):
        return _fail(404, 'Study session not found', session_id, request_id)
    return {'success': True, 'session_id': session_id, 'request_id': request_id}


def _apply(session_id: str, request_id: str, event: str, action):
    store = StudySessionStore.get_instance()
    try:
        engine = store.load_engine(session_id)
        action(engine)
    except StudySessionError as e:
        return _study_failure(e, request_id)
    record = store.save_engine(session_id, engine)
    _record_event(session_id, event, engine)
    return _session_body(session_id, engine, record, request_id)


@app.post('/study/sessions/{session_id}/flip')
async def flip_endpoint(session_id: str, request: Request):
    return _apply(session_id, _request_id(request), 'flip', lambda engine: engine.flip())


@app.post('/study/sessions/{session_id}/rate')
async def rate_endpoint(session_id: str, req: RateRequest, request: Request):
    return _apply(session_id, _request_id(request), f'rate_{req.rating.value}', lambda engine: engine.rate(req.rating))


@app.post('/study/sessions/{session_id}/skip')
async def skip_endpoint(session_id: str, request: Request):
    return _apply(session_id, _request_id(request), 'skip', lambda engine: engine.skip())


@app.post('/study/sessions/{session_id}/restart')
async def restart_endpoint(session_id: str, request: Request):
    ctx = _context(request)
    store = StudySessionStore.get_instance()
    try:
        record = store.require_session(session_id)
        engine = StudyEngine.from_dict(record['engine'])
        if record.get('deck_id'):
            # a stored deck may have been edited since the session started
            cards = load_deck(get_deck_store(), ctx, record['deck_id']).cards
        else:
            cards = store.source_cards(session_id)
        engine.restart(cards)
    except StudySessionError as e:
        return _study_failure(e, ctx.request_id)
    except IncompleteCardError as e:
        return _incomplete(e, ctx.request_id)
    except DeckStoreError as e:
        return _store_failure(e, ctx.request_id)
    record = store.save_engine(session_id, engine, source_cards=cards)
    _record_event(session_id, 'restart', engine)
    return _session_body(session_id, engine, record, ctx.request_id)


if __name__ == '__main__':
    import uvicorn

    workers = int(os.getenv('WORKERS', '1'))
    if settings.ENVIRONMENT == 'development':
        workers = 1
    uvicorn.run(
        'main:app',
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.ENVIRONMENT == 'development',
        workers=workers,
    )
