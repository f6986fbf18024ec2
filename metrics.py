"""Perceptual quality metrics (SSIM/PSNR) for benchmark outputs.

The reference and the candidate are both rendered through Pillow to 8-bit
grayscale at identical dimensions; the metric math itself is scikit-image's.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Union
import logging
import math

import numpy as np
from PIL import Image
from skimage.metrics import mean_squared_error, peak_signal_noise_ratio, structural_similarity

logger = logging.getLogger(__name__)

PSNR_IDENTICAL = 100.0


@dataclass
class RawImage:
    data: np.ndarray
    width: int
    height: int


def get_raw_data(source: Union[str, Image.Image], width: Optional[int] = None, height: Optional[int] = None) -> RawImage:
    """Render ``source`` to a grayscale uint8 array.

    When width and height are both given the image is stretched to exactly
    that size (aspect ratio ignored) so it lines up with the reference.
    """
    im = Image.open(source) if isinstance(source, str) else source
    try:
        im.load()
        if width and height:
            im = im.resize((int(width), int(height)), Image.Resampling.LANCZOS)
        if im.mode in ('RGBA', 'LA', 'PA') or (im.mode == 'P' and 'transparency' in im.info):
            im = im.convert('RGBA').convert('RGB')
        gray = im.convert('L')
        data = np.asarray(gray, dtype=np.uint8)
    finally:
        if isinstance(source, str):
            im.close()
    return RawImage(data=data, width=data.shape[1], height=data.shape[0])


def calculate_psnr(ref: np.ndarray, target: np.ndarray) -> float:
    if ref is None or target is None or ref.size != target.size:
        return 0.0
    if ref.shape != target.shape:
        target = target.reshape(ref.shape)
    mse = mean_squared_error(ref, target)
    if mse == 0:
        return math.inf
    return float(peak_signal_noise_ratio(ref, target, data_range=255))


def calculate_metrics(ref_raw: RawImage, target_path: str) -> Dict[str, float]:
    try:
        target_raw = get_raw_data(target_path, ref_raw.width, ref_raw.height)
        psnr = calculate_psnr(ref_raw.data, target_raw.data)
        ssim = structural_similarity(ref_raw.data, target_raw.data, data_range=255)
        result = {
            'psnr': PSNR_IDENTICAL if math.isinf(psnr) else round(psnr, 2),
            'ssim': round(float(ssim), 4),
        }
        logger.info('Calculated metrics for %s: SSIM=%s, PSNR=%sdB', target_path, result['ssim'], result['psnr'])
        return result
    except Exception:
        logger.exception('Metrics calculation failed for %s', target_path)
        return {'psnr': 0, 'ssim': 0}
