"""Utility helpers for image decoding, geometry, naming and uploads.

Shared by the benchmark runner, the HTTP API and the Streamlit app. Functions
document the exceptions they raise so callers can handle them consistently.
"""
from typing import Optional, Tuple
import math
import re

import cv2
import numpy as np
import requests


ALLOWED_MIMETYPES = ('image/jpeg', 'image/png', 'image/webp', 'image/avif')


def safe_decode_image(image_bytes: bytes) -> Optional[np.ndarray]:
    """Safely decode image bytes to an OpenCV numpy array.

    The EXIF orientation tag is ignored, as Pillow does, so both libraries see
    the stored pixel grid. Returns None on decode failure instead of raising.
    """
    if not image_bytes:
        return None
    try:
        arr = np.frombuffer(image_bytes, dtype=np.uint8)
        return cv2.imdecode(arr, cv2.IMREAD_COLOR | cv2.IMREAD_IGNORE_ORIENTATION)
    except cv2.error:
        return None


def validate_image_array(image_array: np.ndarray, min_size: int = 1, max_size: int = 100000) -> None:
    """Validate a decoded image array and raise descriptive exceptions on failure.

    Raises ValueError or TypeError with clear messages for callers to present to users.
    """
    if image_array is None:
        raise ValueError('image_array is None')

    if not hasattr(image_array, 'shape'):
        raise TypeError('image_array must be a numpy array-like with .shape')

    dims = image_array.shape
    if len(dims) not in (2, 3):
        raise ValueError(f'Invalid image dimensions: expected 2 or 3, got {len(dims)}')

    h, w = int(dims[0]), int(dims[1])
    if h < min_size or w < min_size:
        raise ValueError(f'Image too small: minimum dimension is {min_size}px')
    if h > max_size or w > max_size:
        raise ValueError(f'Image too large: maximum dimension is {max_size}px')

    if not np.issubdtype(image_array.dtype, np.integer) and not np.issubdtype(image_array.dtype, np.floating):
        raise TypeError(f'Image dtype must be numeric, got {image_array.dtype}')


def fit_inside(width: int, height: int, target_width: int, target_height: int) -> Tuple[int, int]:
    """Largest (w, h) with the source aspect ratio that fits the target box.

    Upscaling is allowed. Both engines size their resize output with this so
    the compared files always have the same dimensions.
    """
    if width <= 0 or height <= 0:
        raise ValueError('Image has non-positive dimensions')
    if target_width <= 0 or target_height <= 0:
        raise ValueError('Target dimensions must be positive')
    scale = min(target_width / float(width), target_height / float(height))
    new_w = max(1, int(round(width * scale)))
    new_h = max(1, int(round(height * scale)))
    return min(new_w, target_width), min(new_h, target_height)


def center_crop_box(width: int, height: int, fraction: float = 0.5) -> Tuple[int, int, int, int]:
    """Return (left, top, crop_width, crop_height) of a centred crop."""
    if not 0 < fraction <= 1:
        raise ValueError(f'Crop fraction must be in (0, 1], got {fraction}')
    crop_w = max(1, int(math.floor(width * fraction)))
    crop_h = max(1, int(math.floor(height * fraction)))
    left = (width - crop_w) // 2
    top = (height - crop_h) // 2
    return left, top, crop_w, crop_h


def sanitize_operation_name(name: str) -> str:
    return re.sub(r'[^a-zA-Z0-9]', '_', name)


def is_allowed_mimetype(mimetype: Optional[str]) -> bool:
    return (mimetype or '').lower() in ALLOWED_MIMETYPES


def format_bytes(b: Optional[int]) -> str:
    if b is None:
        return 'N/A'
    if b == 0:
        return '0 B'
    size = float(b)
    for unit in ['B', 'KB', 'MB', 'GB']:
        if abs(size) < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} TB"


def format_time(ms: Optional[float]) -> str:
    """Format a duration given in milliseconds."""
    if ms is None:
        return 'N/A'
    if ms < 1000:
        return f"{ms:.0f} ms"
    return f"{ms / 1000.0:.2f} s"


def post_benchmark(api_url: str, filename: str, data: bytes, mimetype: str, timeout: int = 3600) -> dict:
    """Upload an image to a running benchmark API and return the run JSON.

    Raises:
        requests.HTTPError: on non-2xx status codes, with the server's error message
        requests.Timeout: on timeout
    """
    url = api_url.rstrip('/') + '/api/benchmark'
    resp = requests.post(url, files={'image': (filename, data, mimetype)}, timeout=timeout)
    if not 200 <= resp.status_code < 300:
        try:
            message = resp.json().get('error')
        except ValueError:
            message = None
        raise requests.HTTPError(message or f'HTTP {resp.status_code}', response=resp)
    return resp.json()
