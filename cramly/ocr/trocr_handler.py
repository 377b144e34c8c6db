"""TrOCR handler: load the handwriting model once and run inference.

torch and transformers are only needed for image uploads and are installed
with the `ocr` extra. Without them, loading the model raises TrOCRModelError.
"""
from __future__ import annotations

import os
import time
import threading
from typing import Dict, Any, Optional

from PIL import Image

from cramly.utils import get_logger, log_model_load

LOG = get_logger()

try:
    import torch
    from transformers import TrOCRProcessor, VisionEncoderDecoderModel
except ImportError:
    # reported when the model is first requested
    torch = None
    TrOCRProcessor = None
    VisionEncoderDecoderModel = None

TROCR_MODEL = os.getenv('TROCR_MODEL', 'microsoft/trocr-base-handwritten')
TROCR_DEVICE = os.getenv('TROCR_DEVICE', 'auto')
TROCR_MAX_LENGTH = int(os.getenv('TROCR_MAX_LENGTH', '512'))


class TrOCRModelError(Exception):
    pass


class TrOCRInferenceError(Exception):
    pass


class TrOCRHandler:
    _instance = None
    _lock = threading.Lock()

    def __init__(self):
        raise RuntimeError('Use get_instance() to obtain TrOCRHandler')

    @classmethod
    def _load_model(cls) -> Dict[str, Any]:
        if torch is None:
            raise TrOCRModelError('torch and transformers are not installed (pip install cramly[ocr])')
        start = time.time()
        cache_dir = os.getenv('TRANSFORMERS_CACHE') or None
        device = 'cuda' if TROCR_DEVICE != 'cpu' and torch.cuda.is_available() else 'cpu'
        LOG.info('trocr_load_start', extra={'model': TROCR_MODEL, 'device': device})
        try:
            proc = TrOCRProcessor.from_pretrained(TROCR_MODEL, cache_dir=cache_dir)
            model = VisionEncoderDecoderModel.from_pretrained(TROCR_MODEL, cache_dir=cache_dir)
        except (OSError, ValueError) as e:
            LOG.exception('trocr_model_load_failed')
            raise TrOCRModelError(str(e))
        model.to(torch.device(device))
        model.eval()
        log_model_load(TROCR_MODEL, device, int((time.time() - start) * 1000))
        return {'model': model, 'processor': proc, 'device': device}

    @classmethod
    def get_instance(cls) -> 'TrOCRHandler':
        if cls._instance is not None:
            return cls._instance
        with cls._lock:
            if cls._instance is None:
                data = cls._load_model()
                inst = object.__new__(cls)
                inst._model = data['model']
                inst._processor = data['processor']
                inst._device = data['device']
                cls._instance = inst
        return cls._instance

    def extract_text(self, image: Image.Image, max_length: Optional[int] = None) -> str:
        if image is None:
            raise TrOCRInferenceError('No image provided')
        start = time.time()
        if image.mode != 'RGB':
            image = image.convert('RGB')
        try:
            pixel_values = self._processor(images=image, return_tensors='pt').pixel_values.to(self._device)
            with torch.no_grad():
                ids = self._model.generate(pixel_values, max_length=max_length or TROCR_MAX_LENGTH)
            text = self._processor.batch_decode(ids, skip_special_tokens=True)[0]
        except (RuntimeError, ValueError, IndexError) as e:
            LOG.exception('trocr_inference_failed')
            raise TrOCRInferenceError(str(e))
        LOG.info('trocr_inference', extra={'model': TROCR_MODEL, 'device': self._device, 'duration_ms': int((time.time() - start) * 1000), 'text_len': len(text)})
        return text

    def cleanup(self):
        self._model = None
        self._processor = None
        if torch is not None and torch.cuda.is_available():
            torch.cuda.empty_cache()
        TrOCRHandler._instance = None
        LOG.info('trocr_cleanup')
