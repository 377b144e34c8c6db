import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger.json import JsonFormatter

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    ctx = get_request_context()
    # explicit extra={'request_id': ...} wins over the context
    if not getattr(record, 'request_id', None):
        record.request_id = ctx.get('request_id')
    if not getattr(record, 'user_id', None):
        record.user_id = ctx.get('user_id')
    return True


def get_logger(name: str = 'cramly'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    # empty LOG_FILE_PATH keeps logging on stdout only
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', 'logs')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(user_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if LOG_FILE_PATH:
        log_path = pathlib.Path(LOG_FILE_PATH)
        if not log_path.is_absolute():
            log_path = pathlib.Path(os.getcwd()) / log_path
        log_path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        combined.setFormatter(fmt)
        logger.addHandler(combined)

        errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(fmt)
        logger.addHandler(errors)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)

    logging.captureWarnings(True)

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_model_load(model_name: str, device: str, load_time_ms: float):
    logger = get_logger()
    logger.info('model_load', extra={'model': model_name, 'device': device, 'load_time_ms': load_time_ms})


def log_llm_call(request_id: str, model: str, prompt_tokens: int, completion_tokens: int, duration_ms: float, purpose: str = None):
    logger = get_logger()
    logger.info('llm_call', extra={'request_id': request_id, 'model': model, 'prompt_tokens': prompt_tokens, 'completion_tokens': completion_tokens, 'duration_ms': duration_ms, 'purpose': purpose})


def log_card_generation(request_id: str, requested: int, produced: int, duration_ms: float, cache_hit: bool = False):
    logger = get_logger()
    logger.info('card_generation', extra={
        'request_id': request_id,
        'requested_count': requested,
        'card_count': produced,
        'duration_ms': duration_ms,
        'cache_hit': cache_hit,
    })


def log_text_extraction(request_id: str, file_kind: str, method: str, text_length: int, duration_ms: float):
    logger = get_logger()
    logger.info('text_extraction', extra={
        'request_id': request_id,
        'file_kind': file_kind,
        'method': method,
        'text_length': text_length,
        'duration_ms': duration_ms,
    })


def log_deck_sync(deck_id: str, inserted: int, updated: int, deleted: int, duration_ms: float, created: bool = False):
    logger = get_logger()
    logger.info('deck_sync', extra={
        'deck_id': deck_id,
        'created': created,
        'inserted': inserted,
        'updated': updated,
        'deleted': deleted,
        'duration_ms': duration_ms,
    })


def log_study_event(session_id: str, event: str, state: str, queue_length: int, completed_count: int):
    logger = get_logger()
    logger.info('study_event', extra={
        'session_id': session_id,
        'event': event,
        'state': state,
        'queue_length': queue_length,
        'completed_count': completed_count,
    })
