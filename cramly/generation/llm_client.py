"""Shared chat-completion call used by card generation and refinement.

Provides:
- LLMClient singleton wrapping the OpenAI SDK with tenacity retries
- JSON-object responses parsed into dicts (with a salvage pass for
  replies wrapped in extra prose)

Custom exceptions: LLMError, LLMAPIError, LLMValidationError, LLMTimeoutError
"""
from __future__ import annotations

import os
import time
import json
from typing import List, Optional, Dict, Any

from openai import OpenAI, APITimeoutError, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from cramly.utils import get_logger, log_llm_call

LOG = get_logger()


class LLMError(Exception):
    pass


class LLMAPIError(LLMError):
    pass


class LLMValidationError(LLMError):
    pass


class LLMTimeoutError(LLMError):
    pass


OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
# any OpenAI-compatible endpoint works, e.g. https://api.groq.com/openai/v1
OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL') or None
OPENAI_MAX_TOKENS = int(os.getenv('OPENAI_MAX_TOKENS', '2000'))
OPENAI_TEMPERATURE = float(os.getenv('OPENAI_TEMPERATURE', '0.3'))
OPENAI_TIMEOUT = int(os.getenv('OPENAI_TIMEOUT', '60'))
OPENAI_RETRY_ATTEMPTS = int(os.getenv('OPENAI_RETRY_ATTEMPTS', '3'))
OPENAI_RETRY_MULTIPLIER = int(os.getenv('OPENAI_RETRY_MULTIPLIER', '2'))
OPENAI_RETRY_MAX_WAIT = int(os.getenv('OPENAI_RETRY_MAX_WAIT', '10'))


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse a model reply into a dict, trimming to the outer braces if needed."""
    if not raw or not raw.strip():
        raise LLMValidationError('Empty model response')
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError:
        start = raw.find('{')
        end = raw.rfind('}')
        if start == -1 or end <= start:
            raise LLMValidationError('Model response is not valid JSON')
        try:
            obj = json.loads(raw[start:end + 1])
        except json.JSONDecodeError as e:
            raise LLMValidationError(f'Model response is not valid JSON: {e}')
    if not isinstance(obj, dict):
        raise LLMValidationError('Model response must be a JSON object')
    return obj


class LLMClient:
    _instance = None

    def __init__(self):
        key = os.getenv('OPENAI_API_KEY')
        if not key:
            raise LLMError('OPENAI_API_KEY not set')
        self.model = OPENAI_MODEL
        self.timeout = OPENAI_TIMEOUT
        # retries are handled by tenacity below
        self._client = OpenAI(api_key=key, base_url=OPENAI_BASE_URL, timeout=self.timeout, max_retries=0)
        LOG.info('LLMClient initialized', extra={'model': self.model, 'base_url': OPENAI_BASE_URL})

    @classmethod
    def get_instance(cls) -> 'LLMClient':
        if cls._instance is None:
            cls._instance = LLMClient()
        return cls._instance

    @retry(stop=stop_after_attempt(OPENAI_RETRY_ATTEMPTS), wait=wait_exponential(multiplier=OPENAI_RETRY_MULTIPLIER, max=OPENAI_RETRY_MAX_WAIT), retry=retry_if_exception_type((LLMAPIError, LLMTimeoutError)), reraise=True)
    def _call_openai(self, messages: List[Dict[str, str]], max_tokens: int, purpose: str, request_id: Optional[str] = None) -> str:
        start = time.time()
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=OPENAI_TEMPERATURE,
                max_tokens=max_tokens,
                response_format={'type': 'json_object'},
            )
        except APITimeoutError as e:
            LOG.exception('openai_timeout')
            raise LLMTimeoutError(str(e))
        except OpenAIError as e:
            LOG.exception('openai_api_error')
            raise LLMAPIError(str(e))
        duration_ms = int((time.time() - start) * 1000)
        usage = getattr(resp, 'usage', None)
        log_llm_call(
            request_id or '',
            self.model,
            getattr(usage, 'prompt_tokens', 0) or 0,
            getattr(usage, 'completion_tokens', 0) or 0,
            duration_ms,
            purpose=purpose,
        )
        if not resp.choices:
            raise LLMAPIError('No choices returned')
        return resp.choices[0].message.content or ''

    def complete_json(self, system_prompt: str, user_prompt: str, purpose: str, max_tokens: Optional[int] = None, request_id: Optional[str] = None) -> Dict[str, Any]:
        messages = [
            {'role': 'system', 'content': system_prompt},
            {'role': 'user', 'content': user_prompt},
        ]
        raw = self._call_openai(messages, max_tokens or OPENAI_MAX_TOKENS, purpose, request_id=request_id)
        LOG.debug('llm_raw_response', extra={'purpose': purpose, 'preview': raw[:400]})
        return parse_json_object(raw)
