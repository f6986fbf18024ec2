"""Benchmark runner comparing OpenCV and Pillow on a single image.

This module implements the fixed operation suite, wall-clock timing, memory
sampling, quality metrics wiring and a small CLI that writes reports. Every
operation is isolated: a failure in one library for one operation is recorded
in the result and the run carries on.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple, List, Dict, Any
import argparse
import gc
import logging
import os
import platform
import threading
import time
import uuid

import psutil
from PIL import Image, UnidentifiedImageError

from config import BenchmarkConfig
from engines import OperationSpec, default_engines, library_versions
from metrics import RawImage, calculate_metrics, get_raw_data
from utils import sanitize_operation_name

logger = logging.getLogger(__name__)

MB = 1024.0 * 1024.0


class InvalidImageError(ValueError):
    """The input file could not be decoded as an image."""


@dataclass
class LibraryResult:
    supported: bool
    time: Optional[int] = None
    total_time: Optional[int] = None
    conversion_time: Optional[int] = None
    size: Optional[int] = None
    memory_used: Optional[float] = None
    url: Optional[str] = None
    ssim: Optional[float] = None
    psnr: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'LibraryResult':
        return cls(supported=d.get('supported', False), time=d.get('time'), total_time=d.get('totalTime'),
                   conversion_time=d.get('conversionTime'), size=d.get('size'), memory_used=d.get('memoryUsed'),
                   url=d.get('url'), ssim=d.get('ssim'), psnr=d.get('psnr'), error=d.get('error'))

    def to_dict(self) -> Dict[str, Any]:
        if not self.supported:
            return {'supported': False}
        if self.error is not None:
            return {'supported': True, 'error': self.error, 'time': None, 'size': None}
        d = {'supported': True, 'time': self.time, 'size': self.size,
             'memoryUsed': self.memory_used, 'url': self.url}
        if self.total_time is not None:
            d['totalTime'] = self.total_time
            d['conversionTime'] = self.conversion_time
        if self.ssim is not None:
            d['ssim'] = self.ssim
            d['psnr'] = self.psnr
        return d


@dataclass
class OperationResult:
    operation: str
    results: Dict[str, LibraryResult] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = {'operation': self.operation}
        for key, res in self.results.items():
            d[key] = res.to_dict()
        return d


@dataclass
class CategoryResult:
    name: str
    description: str
    highlight: Optional[str]
    results: List[OperationResult]

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'description': self.description, 'highlight': self.highlight,
                'results': [r.to_dict() for r in self.results]}


@dataclass
class BenchmarkRun:
    session_id: str
    original: Dict[str, Any]
    versions: Dict[str, str]
    categories: List[CategoryResult]
    system: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'sessionId': self.session_id, 'original': self.original, 'versions': self.versions,
                'system': self.system, 'categories': [c.to_dict() for c in self.categories]}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> 'BenchmarkRun':
        """Rebuild a run from its JSON form (API responses, saved reports)."""
        categories = []
        for cat in payload.get('categories', []):
            ops = []
            for op in cat.get('results', []):
                results = {k: LibraryResult.from_dict(v) for k, v in op.items() if k != 'operation'}
                ops.append(OperationResult(operation=op['operation'], results=results))
            categories.append(CategoryResult(cat['name'], cat.get('description', ''), cat.get('highlight'), ops))
        return cls(session_id=payload.get('sessionId', ''), original=payload.get('original', {}),
                   versions=payload.get('versions', {}), categories=categories, system=payload.get('system', {}))


class MemorySampler:
    """Poll process RSS with psutil on a background thread while a workload runs."""

    def __init__(self, interval: float = 0.01):
        self.interval = interval
        self._stop = threading.Event()
        self._samples: List[int] = []
        self._thread = None
        self._proc = psutil.Process()
        self.baseline: Optional[int] = None

    def _rss(self) -> int:
        return self._proc.memory_info().rss

    def __enter__(self):
        gc.collect()
        self.baseline = self._rss()
        self._samples = [self.baseline]

        def _run():
            while not self._stop.is_set():
                try:
                    self._samples.append(self._rss())
                except psutil.Error:
                    break
                time.sleep(self.interval)

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        self._samples.append(self._rss())

    @property
    def peak(self) -> Optional[int]:
        return max(self._samples) if self._samples else None

    def delta_mb(self) -> float:
        if self.baseline is None or not self._samples:
            return 0.0
        return max(0.0, round((self.peak - self.baseline) / MB, 2))


def _zero_copy_specs(cfg: BenchmarkConfig) -> List[OperationSpec]:
    return [
        OperationSpec('WebP Conversion (No Resize)', '.webp', 'webp', cfg.webp_quality),
        OperationSpec('AVIF Conversion (No Resize)', '.avif', 'avif', cfg.avif_quality),
        OperationSpec('JPEG Compression (No Resize)', '.jpg', 'jpeg', cfg.jpeg_quality),
    ]


def _resize_specs(cfg: BenchmarkConfig) -> List[OperationSpec]:
    return [
        OperationSpec('Resize + WebP', '_resize.webp', 'webp', cfg.webp_quality, 'resize'),
        OperationSpec('Resize + AVIF', '_resize.avif', 'avif', cfg.avif_quality, 'resize'),
        OperationSpec('Resize + JPEG', '_resize.jpg', 'jpeg', cfg.jpeg_quality, 'resize'),
    ]


def _advanced_specs(cfg: BenchmarkConfig) -> List[OperationSpec]:
    sigma = f'{cfg.blur_sigma:g}'
    crop_pct = f'{cfg.crop_fraction * 100:g}'
    return [
        OperationSpec('PNG Compression', '.png', 'png', cfg.png_compression_level,
                      challenger_supported=False, with_metrics=False),
        OperationSpec(f'{cfg.rotate_degrees}° Rotation', '_rotate.jpg', 'jpeg', cfg.jpeg_quality, 'rotate',
                      challenger_supported=False, with_metrics=False),
        OperationSpec(f'Crop (Center {crop_pct}%)', '_crop.jpg', 'jpeg', cfg.jpeg_quality, 'crop',
                      challenger_supported=False, with_metrics=False),
        OperationSpec(f'Blur (sigma: {sigma})', '_blur.jpg', 'jpeg', cfg.jpeg_quality, 'blur',
                      challenger_supported=False, with_metrics=False),
        OperationSpec('Grayscale', '_gray.jpg', 'jpeg', cfg.jpeg_quality, 'grayscale',
                      challenger_supported=False, with_metrics=False),
    ]


def _preconvert_for(engine, input_path: str, input_format: Optional[str], output_dir: str) -> Tuple[str, Optional[float]]:
    """Convert the input to a lossless-ish JPEG when ``engine`` cannot decode it.

    Returns (path_to_use, conversion_ms). Pillow does the conversion.
    """
    if engine.can_read(input_format):
        return input_path, None
    logger.info('Converting %s input to JPEG for %s compatibility', input_format, engine.label)
    temp_path = os.path.join(output_dir, f'temp_{uuid.uuid4().hex}.jpg')
    start = time.perf_counter()
    try:
        with Image.open(input_path) as im:
            im.convert('RGB').save(temp_path, format='JPEG', quality=100)
    except Exception:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
    return temp_path, (time.perf_counter() - start) * 1000.0


# Pillow names multi-picture camera JPEGs MPO; the first frame is a plain JPEG stream
_FORMAT_ALIASES = {'mpo': 'jpeg'}


def _normalize_format(fmt: Optional[str]) -> str:
    fmt = (fmt or '').lower()
    return _FORMAT_ALIASES.get(fmt, fmt)


def _image_format(path: str) -> Optional[str]:
    with Image.open(path) as im:
        return _normalize_format(im.format) or None


def run_single_test(spec: OperationSpec, input_path: str, output_dir: str, session_id: str, engines=None,
                    config: Optional[BenchmarkConfig] = None, ref_raw: Optional[RawImage] = None,
                    input_format: Optional[str] = None) -> OperationResult:
    config = config or BenchmarkConfig()
    engines = engines if engines is not None else default_engines()
    result = OperationResult(operation=spec.name)

    for engine in engines:
        if not engine.supports(spec):
            result.results[engine.key] = LibraryResult(supported=False)
            continue

        actual_input = input_path
        conversion_ms = None
        try:
            if input_format is None:
                input_format = _image_format(input_path)
            actual_input, conversion_ms = _preconvert_for(engine, input_path, input_format, output_dir)

            output_filename = f'{engine.key}_{sanitize_operation_name(spec.name)}{spec.output_ext}'
            output_path = os.path.join(output_dir, output_filename)

            with MemorySampler(config.memory_sample_interval) as sampler:
                start = time.perf_counter()
                engine.run(spec, actual_input, output_path, config)
                elapsed_ms = (time.perf_counter() - start) * 1000.0

            size = os.path.getsize(output_path)

            metrics = {}
            if ref_raw is not None and spec.with_metrics:
                logger.info('[%s] Calculating metrics for %s (ref: %dx%d)', spec.name, engine.label,
                            ref_raw.width, ref_raw.height)
                metrics = calculate_metrics(ref_raw, output_path)
            else:
                logger.debug('[%s] Skipping metrics for %s', spec.name, engine.label)

            lib = LibraryResult(
                supported=True,
                time=int(round(elapsed_ms)),
                size=size,
                memory_used=sampler.delta_mb(),
                url=f'/output/{session_id}/{output_filename}',
                ssim=metrics.get('ssim'),
                psnr=metrics.get('psnr'),
            )
            if conversion_ms is not None:
                lib.conversion_time = int(round(conversion_ms))
                lib.total_time = lib.time + lib.conversion_time
            result.results[engine.key] = lib
            logger.info('[%s] %s: %d ms, %d bytes', spec.name, engine.label, lib.time, size)
        except Exception as e:
            logger.exception('[%s] %s error', spec.name, engine.label)
            result.results[engine.key] = LibraryResult(supported=True, error=str(e) or type(e).__name__)
        finally:
            if actual_input != input_path and os.path.exists(actual_input):
                os.remove(actual_input)

    return result


def run_zero_copy_tests(input_path, output_dir, session_id, ref_raw=None, engines=None, config=None, input_format=None):
    config = config or BenchmarkConfig()
    return [run_single_test(s, input_path, output_dir, session_id, engines, config, ref_raw, input_format)
            for s in _zero_copy_specs(config)]


def run_resize_tests(input_path, output_dir, session_id, ref_raw=None, engines=None, config=None, input_format=None):
    config = config or BenchmarkConfig()
    return [run_single_test(s, input_path, output_dir, session_id, engines, config, ref_raw, input_format)
            for s in _resize_specs(config)]


def run_advanced_tests(input_path, output_dir, session_id, engines=None, config=None, input_format=None):
    config = config or BenchmarkConfig()
    return [run_single_test(s, input_path, output_dir, session_id, engines, config, None, input_format)
            for s in _advanced_specs(config)]


def read_original_info(input_path: str) -> Dict[str, Any]:
    try:
        with Image.open(input_path) as im:
            width, height = im.size
            fmt = _normalize_format(im.format)
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, EOFError, ValueError) as e:
        raise InvalidImageError(f'Could not read image {os.path.basename(input_path)}: {e}')
    return {
        'filename': os.path.basename(input_path),
        'size': os.path.getsize(input_path),
        'width': width,
        'height': height,
        'format': fmt,
    }


def prepare_references(input_path: str, original_size: int, config: BenchmarkConfig) -> Tuple[Optional[RawImage], Optional[RawImage]]:
    """Build the zero-copy (full size) and resize (target size) metric references."""
    zero_copy_ref = None
    resize_ref = None
    try:
        if original_size < config.reference_max_bytes:
            zero_copy_ref = get_raw_data(input_path)
            logger.info('Zero-copy reference prepared: %dx%d', zero_copy_ref.width, zero_copy_ref.height)
        else:
            logger.info('Skipping zero-copy reference (file too large: %.2fMB)', original_size / MB)
        resize_ref = get_raw_data(input_path, config.target_width, config.target_height)
        logger.info('Resize reference prepared: %dx%d', resize_ref.width, resize_ref.height)
    except Exception:
        logger.warning('Failed to prepare reference data for metrics', exc_info=True)
    return zero_copy_ref, resize_ref


def run_benchmark(input_path: str, session_id: Optional[str] = None, config: Optional[BenchmarkConfig] = None,
                  engines=None) -> BenchmarkRun:
    config = config or BenchmarkConfig()
    engines = engines if engines is not None else default_engines()
    session_id = session_id or str(uuid.uuid4())

    original = read_original_info(input_path)
    output_dir = os.path.join(config.output_dir, session_id)
    os.makedirs(output_dir, exist_ok=True)

    zero_copy_ref, resize_ref = prepare_references(input_path, original['size'], config)
    challenger = engines[0].key if engines else None
    reference = engines[-1].key if engines else None
    fmt = original['format']

    categories = [
        CategoryResult(
            name='Zero-Copy Conversion (No Resize)',
            description=f'{engines[0].label} strength: direct format conversion without resizing',
            highlight=challenger,
            results=run_zero_copy_tests(input_path, output_dir, session_id, zero_copy_ref, engines, config, fmt),
        ),
        CategoryResult(
            name='Resize + Format Conversion',
            description=f'Common features: resize to fit {config.target_width}x{config.target_height}, '
                        f'then convert to each format',
            highlight=None,
            results=run_resize_tests(input_path, output_dir, session_id, resize_ref, engines, config, fmt),
        ),
        CategoryResult(
            name='Advanced Image Operations',
            description=f'{engines[-1].label} strength: operations not supported by {engines[0].label}',
            highlight=reference,
            results=run_advanced_tests(input_path, output_dir, session_id, engines, config, fmt),
        ),
    ]

    return BenchmarkRun(session_id=session_id, original=original, versions=library_versions(engines),
                        categories=categories, system=get_system_info(engines))


def determine_winners(op: OperationResult) -> Dict[str, Optional[str]]:
    """Return the engine key that was faster and the one that was smaller, if any."""
    measured = {k: r for k, r in op.results.items() if r.supported and r.error is None}
    winners = {'time': None, 'size': None}
    if len(measured) < 2:
        return winners
    for metric in ('time', 'size'):
        values = [(getattr(r, metric), k) for k, r in measured.items() if getattr(r, metric) is not None]
        if len(values) < 2:
            continue
        values.sort()
        if values[0][0] < values[1][0]:
            winners[metric] = values[0][1]
    return winners


def get_system_info(engines=None) -> Dict[str, Any]:
    return {
        'platform': platform.platform(),
        'python_version': platform.python_version(),
        'cpu_count': psutil.cpu_count(logical=True),
        'total_ram_bytes': psutil.virtual_memory().total,
        'libraries': library_versions(engines),
    }


def main(argv=None):
    p = argparse.ArgumentParser(description='Benchmark OpenCV against Pillow on one image')
    p.add_argument('image', nargs='?', help='Path of the image to benchmark')
    p.add_argument('--output-dir', help='Directory for generated images (default: $BENCH_OUTPUT_DIR or output)')
    p.add_argument('--report-dir', default='benchmark_reports')
    p.add_argument('--session-id')
    p.add_argument('--compare', nargs=2, metavar=('REPORT_A', 'REPORT_B'),
                   help='Compare two JSON reports instead of running a benchmark')
    p.add_argument('--log-level')
    args = p.parse_args(argv)

    config = BenchmarkConfig.from_env()
    if args.output_dir:
        config.output_dir = args.output_dir
    logging.basicConfig(level=(args.log_level or config.log_level).upper(),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    from reports import compare_benchmark_reports, generate_benchmark_report

    if args.compare:
        paths = compare_benchmark_reports(args.compare[0], args.compare[1], output_dir=args.report_dir)
        print('Comparison reports generated:', paths)
        return 0

    if not args.image:
        p.print_help()
        return 2

    run = run_benchmark(args.image, session_id=args.session_id, config=config)
    paths = generate_benchmark_report(run, output_dir=args.report_dir)
    print('Reports generated:', paths)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
