"""Adapters for the two image libraries under test.

Each engine runs one operation end to end (decode, transform, encode, write)
inside a single call so the runner can time it as a unit. OpenCV is the
challenger: it handles format conversion and resizing only. Pillow is the
reference engine: it supports every operation and also renders the images the
quality metrics compare against.
"""
from dataclasses import dataclass
from typing import Dict, Optional
import logging
import platform

import cv2
import numpy as np
from PIL import Image, ImageFilter
import PIL

from config import BenchmarkConfig
from utils import center_crop_box, fit_inside, safe_decode_image, validate_image_array

logger = logging.getLogger(__name__)

TRANSFORMS = (None, 'resize', 'rotate', 'crop', 'blur', 'grayscale')


@dataclass(frozen=True)
class OperationSpec:
    name: str
    output_ext: str
    output_format: str  # 'webp' | 'avif' | 'jpeg' | 'png'
    quality: Optional[int] = None
    transform: Optional[str] = None
    challenger_supported: bool = True
    with_metrics: bool = True


class ImageEngine:
    key = ''
    label = ''
    readable_formats = frozenset()
    transforms = frozenset()

    def version(self) -> str:
        raise NotImplementedError

    def can_read(self, image_format: Optional[str]) -> bool:
        return (image_format or '').lower() in self.readable_formats

    def supports(self, spec: OperationSpec) -> bool:
        return spec.transform in self.transforms

    def run(self, spec: OperationSpec, input_path: str, output_path: str, config: BenchmarkConfig) -> None:
        raise NotImplementedError


class OpenCVEngine(ImageEngine):
    key = 'opencv'
    label = 'OpenCV'
    readable_formats = frozenset({'jpeg', 'png', 'webp'})
    transforms = frozenset({None, 'resize'})

    def version(self) -> str:
        return _distribution_version(
            ('opencv-python-headless', 'opencv-python', 'opencv-contrib-python', 'opencv-contrib-python-headless'),
            getattr(cv2, '__version__', None))

    def supports(self, spec: OperationSpec) -> bool:
        return spec.challenger_supported and spec.transform in self.transforms

    def _load(self, input_path: str) -> np.ndarray:
        with open(input_path, 'rb') as f:
            img = safe_decode_image(f.read())
        validate_image_array(img)
        return img

    def _encode_params(self, spec: OperationSpec):
        fmt = spec.output_format
        if fmt == 'jpeg':
            return [cv2.IMWRITE_JPEG_QUALITY, int(spec.quality or 95)]
        if fmt == 'webp':
            return [cv2.IMWRITE_WEBP_QUALITY, int(spec.quality or 100)]
        if fmt == 'png':
            return [cv2.IMWRITE_PNG_COMPRESSION, int(spec.quality if spec.quality is not None else 3)]
        if fmt == 'avif':
            flag = getattr(cv2, 'IMWRITE_AVIF_QUALITY', None)
            if flag is None:
                raise RuntimeError('This OpenCV build has no AVIF encoder')
            return [flag, int(spec.quality or 95)]
        raise ValueError(f'Unsupported output format: {fmt}')

    def run(self, spec, input_path, output_path, config):
        if not self.supports(spec):
            raise ValueError(f'{self.label} does not support {spec.name}')
        img = self._load(input_path)
        if spec.transform == 'resize':
            h, w = img.shape[:2]
            new_w, new_h = fit_inside(w, h, config.target_width, config.target_height)
            interp = cv2.INTER_AREA if new_w * new_h < w * h else cv2.INTER_LANCZOS4
            img = cv2.resize(img, (new_w, new_h), interpolation=interp)
        params = self._encode_params(spec)
        if not cv2.imwrite(output_path, img, params):
            raise RuntimeError(f'cv2.imwrite failed for {spec.output_format} output')


class PillowEngine(ImageEngine):
    key = 'pillow'
    label = 'Pillow'
    readable_formats = frozenset({'jpeg', 'png', 'webp', 'avif', 'gif', 'bmp', 'tiff'})
    transforms = frozenset(TRANSFORMS)

    def version(self) -> str:
        return _distribution_version(('pillow', 'Pillow'), getattr(PIL, '__version__', None))

    def _transform(self, im: Image.Image, spec: OperationSpec, config: BenchmarkConfig) -> Image.Image:
        t = spec.transform
        if t is None:
            return im
        if t == 'resize':
            size = fit_inside(im.width, im.height, config.target_width, config.target_height)
            return im.resize(size, Image.Resampling.LANCZOS)
        if t == 'rotate':
            # Image.rotate is counter-clockwise
            return im.rotate(-config.rotate_degrees, expand=True)
        if t == 'crop':
            left, top, cw, ch = center_crop_box(im.width, im.height, config.crop_fraction)
            return im.crop((left, top, left + cw, top + ch))
        if t == 'blur':
            return im.filter(ImageFilter.GaussianBlur(radius=config.blur_sigma))
        if t == 'grayscale':
            return im.convert('L')
        raise ValueError(f'Unknown transform: {t}')

    def run(self, spec, input_path, output_path, config):
        with Image.open(input_path) as src:
            src.load()
            im = self._transform(src, spec, config)
            fmt = spec.output_format
            if fmt == 'jpeg':
                if im.mode not in ('RGB', 'L'):
                    im = im.convert('RGB')
                im.save(output_path, format='JPEG', quality=spec.quality)
            elif fmt == 'webp':
                im.save(output_path, format='WEBP', quality=spec.quality)
            elif fmt == 'avif':
                im.save(output_path, format='AVIF', quality=spec.quality)
            elif fmt == 'png':
                level = spec.quality if spec.quality is not None else config.png_compression_level
                im.save(output_path, format='PNG', compress_level=level)
            else:
                raise ValueError(f'Unsupported output format: {fmt}')


def _distribution_version(dist_names, fallback: Optional[str]) -> str:
    from importlib import metadata

    for name in dist_names:
        try:
            return metadata.version(name)
        except metadata.PackageNotFoundError:
            continue
    if fallback:
        logger.debug('No distribution metadata for %s, using module version %s', dist_names[0], fallback)
        return str(fallback)
    logger.warning('Could not determine version for %s', dist_names[0])
    return 'unknown'


def default_engines():
    """Challenger first, reference second; the runner measures in this order."""
    return [OpenCVEngine(), PillowEngine()]


def library_versions(engines=None) -> Dict[str, str]:
    engines = engines or default_engines()
    versions = {e.key: e.version() for e in engines}
    versions['python'] = platform.python_version()
    return versions
