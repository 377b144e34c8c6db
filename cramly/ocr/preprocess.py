"""OpenCV cleanup applied to photographed notes before OCR.

Environment variables:
- PREPROCESSING_ENABLED (default true)
- PREPROCESSING_DENOISE (default true)
- PREPROCESSING_THRESHOLD (default true)
- MIN_IMAGE_DIMENSION (default 20)
- MAX_IMAGE_DIMENSION (default 10000)
"""
from __future__ import annotations

import os
import time
from typing import List, Tuple

import cv2
import numpy as np
from PIL import Image

from cramly.utils import get_logger

LOG = get_logger()

PREPROCESSING_ENABLED = os.getenv('PREPROCESSING_ENABLED', 'true').lower() in ('1', 'true', 'yes')
PREPROCESSING_DENOISE = os.getenv('PREPROCESSING_DENOISE', 'true').lower() in ('1', 'true', 'yes')
PREPROCESSING_THRESHOLD = os.getenv('PREPROCESSING_THRESHOLD', 'true').lower() in ('1', 'true', 'yes')
MIN_IMAGE_DIMENSION = int(os.getenv('MIN_IMAGE_DIMENSION', '20'))
MAX_IMAGE_DIMENSION = int(os.getenv('MAX_IMAGE_DIMENSION', '10000'))


class ImagePreprocessingError(Exception):
    """Raised for images that are too small, too large or unreadable by OpenCV."""
    pass


def to_grayscale(image: Image.Image) -> np.ndarray:
    return cv2.cvtColor(np.array(image.convert('RGB')), cv2.COLOR_RGB2GRAY)


def denoise_image(gray: np.ndarray) -> np.ndarray:
    return cv2.fastNlMeansDenoising(gray, None, h=10, templateWindowSize=7, searchWindowSize=21)


def threshold_image(gray: np.ndarray) -> np.ndarray:
    return cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2)


def _validate_dimensions(w: int, h: int):
    if w < MIN_IMAGE_DIMENSION or h < MIN_IMAGE_DIMENSION:
        raise ImagePreprocessingError(f'image_too_small: {w}x{h}')
    if w > MAX_IMAGE_DIMENSION or h > MAX_IMAGE_DIMENSION:
        raise ImagePreprocessingError(f'image_too_large: {w}x{h}')


def preprocess_image(image: Image.Image, enable_denoise: bool = True, enable_threshold: bool = True) -> Tuple[Image.Image, List[str]]:
    """Return the cleaned-up RGB image and the list of steps applied.

    With PREPROCESSING_ENABLED off the image is returned as-is (converted to RGB).
    """
    w, h = image.size
    _validate_dimensions(w, h)
    if not PREPROCESSING_ENABLED:
        return image.convert('RGB'), []
    start = time.time()
    steps: List[str] = []
    try:
        processed = to_grayscale(image)
        if enable_denoise and PREPROCESSING_DENOISE:
            processed = denoise_image(processed)
            steps.append('denoise')
        if enable_threshold and PREPROCESSING_THRESHOLD:
            processed = threshold_image(processed)
            steps.append('threshold')
    except cv2.error as e:
        LOG.exception('preprocess_failed')
        raise ImagePreprocessingError(str(e))
    out = Image.fromarray(cv2.cvtColor(processed, cv2.COLOR_GRAY2RGB))
    LOG.info('preprocess_complete', extra={'steps': steps, 'processing_time_ms': int((time.time() - start) * 1000)})
    return out, steps
