"""Run configuration for the image library benchmark.

Defaults live on the dataclass; ``from_env`` overlays the handful of values
that deployments usually change (ports, directories, upload limit).
"""
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional


@dataclass
class BenchmarkConfig:
    target_width: int = 800
    target_height: int = 600
    webp_quality: int = 80
    avif_quality: int = 60
    jpeg_quality: int = 80
    png_compression_level: int = 9
    blur_sigma: float = 5.0
    crop_fraction: float = 0.5
    rotate_degrees: int = 90  # clockwise
    reference_max_bytes: int = 50 * 1024 * 1024
    memory_sample_interval: float = 0.01
    output_dir: str = 'output'
    upload_dir: str = 'uploads'
    max_upload_bytes: int = 10 * 1024 * 1024 * 1024
    port: int = 4000
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BenchmarkConfig':
        env = os.environ if environ is None else environ
        cfg = cls()
        overrides = {}

        def _int(name):
            raw = env.get(name)
            if raw is None or raw == '':
                return None
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f'{name} must be an integer, got {raw!r}')

        for var, field_name in (('PORT', 'port'),
                                ('BENCH_MAX_UPLOAD_BYTES', 'max_upload_bytes'),
                                ('BENCH_TARGET_WIDTH', 'target_width'),
                                ('BENCH_TARGET_HEIGHT', 'target_height')):
            v = _int(var)
            if v is not None:
                overrides[field_name] = v

        if env.get('BENCH_OUTPUT_DIR'):
            overrides['output_dir'] = env['BENCH_OUTPUT_DIR']
        if env.get('BENCH_UPLOAD_DIR'):
            overrides['upload_dir'] = env['BENCH_UPLOAD_DIR']
        if env.get('BENCH_LOG_LEVEL'):
            overrides['log_level'] = env['BENCH_LOG_LEVEL'].upper()

        return replace(cfg, **overrides)

    def ensure_dirs(self) -> None:
        os.makedirs(self.output_dir, exist_ok=True)
        os.makedirs(self.upload_dir, exist_ok=True)
