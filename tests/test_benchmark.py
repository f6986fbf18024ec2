import os
import time

import pytest
from PIL import Image

from benchmark import (
    BenchmarkRun,
    InvalidImageError,
    LibraryResult,
    MemorySampler,
    OperationResult,
    determine_winners,
    get_system_info,
    main,
    read_original_info,
    run_benchmark,
    run_single_test,
)
from engines import ImageEngine, OpenCVEngine, OperationSpec, PillowEngine
from metrics import get_raw_data


class ExplodingEngine(ImageEngine):
    key = 'boom'
    label = 'Boom'
    readable_formats = frozenset({'png'})
    transforms = frozenset({None})

    def version(self):
        return '0'

    def run(self, spec, input_path, output_path, config):
        raise RuntimeError('encoder exploded')


def test_memory_sampler_reports_non_negative_delta():
    with MemorySampler(interval=0.001) as sampler:
        blob = bytearray(20 * 1024 * 1024)
        time.sleep(0.01)
    del blob
    assert sampler.baseline is not None
    assert sampler.delta_mb() >= 0.0
    assert sampler.peak >= sampler.baseline


def test_library_result_serialization_shapes():
    assert LibraryResult(supported=False).to_dict() == {'supported': False}
    assert LibraryResult(supported=True, error='bad').to_dict() == {
        'supported': True, 'error': 'bad', 'time': None, 'size': None}
    d = LibraryResult(supported=True, time=5, size=10, memory_used=0.5, url='/output/s/x.jpg',
                      ssim=0.9, psnr=30.0).to_dict()
    assert d['ssim'] == 0.9 and d['memoryUsed'] == 0.5
    assert 'totalTime' not in d


def test_run_single_test_records_unsupported_and_metrics(sample_png, bench_config, tmp_path):
    out_dir = str(tmp_path / 'run')
    os.makedirs(out_dir)
    ref = get_raw_data(sample_png)
    spec = OperationSpec('JPEG Compression (No Resize)', '.jpg', 'jpeg', 80)
    res = run_single_test(spec, sample_png, out_dir, 'sess', [OpenCVEngine(), PillowEngine()], bench_config, ref)

    assert res.operation == spec.name
    for key in ('opencv', 'pillow'):
        lib = res.results[key]
        assert lib.error is None
        assert lib.time >= 0 and lib.size > 0
        assert lib.memory_used >= 0
        assert lib.url == f'/output/sess/{key}_JPEG_Compression__No_Resize_.jpg'
        assert os.path.exists(os.path.join(out_dir, f'{key}_JPEG_Compression__No_Resize_.jpg'))
        assert 0 < lib.ssim <= 1

    blur = OperationSpec('Blur (sigma: 5)', '_blur.jpg', 'jpeg', 80, 'blur', challenger_supported=False,
                         with_metrics=False)
    res = run_single_test(blur, sample_png, out_dir, 'sess', [OpenCVEngine(), PillowEngine()], bench_config, ref)
    assert res.to_dict()['opencv'] == {'supported': False}
    assert res.results['pillow'].ssim is None


def test_run_single_test_catches_engine_errors(sample_png, bench_config, tmp_path):
    spec = OperationSpec('WebP Conversion (No Resize)', '.webp', 'webp', 80)
    res = run_single_test(spec, sample_png, str(tmp_path), 'sess', [ExplodingEngine(), PillowEngine()], bench_config)
    assert res.results['boom'].error == 'encoder exploded'
    assert res.to_dict()['boom']['time'] is None
    assert res.results['pillow'].error is None


def test_challenger_preconverts_unreadable_input(sample_png, bench_config, tmp_path):
    class NoPngOpenCV(OpenCVEngine):
        readable_formats = frozenset({'jpeg'})

    spec = OperationSpec('JPEG Compression (No Resize)', '.jpg', 'jpeg', 80)
    res = run_single_test(spec, sample_png, str(tmp_path), 'sess', [NoPngOpenCV()], bench_config)
    lib = res.results['opencv']
    assert lib.error is None
    assert lib.conversion_time is not None
    assert lib.total_time == lib.time + lib.conversion_time
    assert not [f for f in os.listdir(tmp_path) if f.startswith('temp_')]


def test_determine_winners():
    op = OperationResult('x', {'opencv': LibraryResult(True, time=5, size=100),
                               'pillow': LibraryResult(True, time=9, size=50)})
    assert determine_winners(op) == {'time': 'opencv', 'size': 'pillow'}

    tie = OperationResult('x', {'opencv': LibraryResult(True, time=5, size=100),
                                'pillow': LibraryResult(True, time=5, size=100)})
    assert determine_winners(tie) == {'time': None, 'size': None}

    one_sided = OperationResult('x', {'opencv': LibraryResult(False), 'pillow': LibraryResult(True, time=1, size=1)})
    assert determine_winners(one_sided) == {'time': None, 'size': None}


def test_read_original_info_rejects_garbage(fixture_files):
    with pytest.raises(InvalidImageError):
        read_original_info(fixture_files['text'])
    info = read_original_info(fixture_files['png'])
    assert info['format'] == 'png' and (info['width'], info['height']) == (96, 64)


@pytest.mark.integration
def test_run_benchmark_full_suite(sample_png, bench_config):
    run = run_benchmark(sample_png, session_id='abc', config=bench_config)
    d = run.to_dict()

    assert d['original']['filename'] == os.path.basename(sample_png)
    assert set(d['versions']) == {'opencv', 'pillow', 'python'}
    assert [c['name'] for c in d['categories']] == [
        'Zero-Copy Conversion (No Resize)', 'Resize + Format Conversion', 'Advanced Image Operations']
    assert [c['highlight'] for c in d['categories']] == ['opencv', None, 'pillow']
    assert [len(c['results']) for c in d['categories']] == [3, 3, 5]

    zero_copy, resize, advanced = run.categories
    jpeg = zero_copy.results[2].results['pillow']
    assert jpeg.error is None and jpeg.ssim is not None
    resized = resize.results[2].results['opencv']
    assert resized.error is None and resized.ssim is not None
    for op in advanced.results:
        assert not op.results['opencv'].supported
        assert op.results['pillow'].ssim is None
    assert os.path.isdir(os.path.join(bench_config.output_dir, 'abc'))

    again = BenchmarkRun.from_dict(d)
    assert again.to_dict() == d


@pytest.mark.integration
def test_run_benchmark_skips_full_size_reference_for_large_files(sample_png, bench_config):
    bench_config.reference_max_bytes = 1
    run = run_benchmark(sample_png, session_id='big', config=bench_config)
    assert run.categories[0].results[0].results['pillow'].ssim is None
    assert run.categories[1].results[2].results['pillow'].ssim is not None


def test_cli_writes_reports(sample_png, tmp_path, monkeypatch):
    monkeypatch.setenv('BENCH_OUTPUT_DIR', str(tmp_path / 'out'))
    report_dir = str(tmp_path / 'reports')
    assert main([sample_png, '--report-dir', report_dir, '--session-id', 'cli']) == 0
    assert sorted(os.listdir(report_dir)) == ['benchmark_cli.csv', 'benchmark_cli.json', 'benchmark_cli.md']


def test_system_info_lists_libraries():
    info = get_system_info()
    assert info['cpu_count'] >= 1
    assert info['total_ram_bytes'] > 0
    assert set(info['libraries']) == {'opencv', 'pillow', 'python'}


def test_failed_conversion_leaves_no_temp_file(sample_png, bench_config, tmp_path, monkeypatch):
    class NoPngOpenCV(OpenCVEngine):
        readable_formats = frozenset({'jpeg'})

    def disk_full(self, fp, format=None, **params):
        with open(fp, 'wb') as f:
            f.write(b'\xff\xd8partial')
        raise OSError(28, 'No space left on device')

    monkeypatch.setattr(Image.Image, 'save', disk_full)
    spec = OperationSpec('JPEG Compression (No Resize)', '.jpg', 'jpeg', 80)
    res = run_single_test(spec, sample_png, str(tmp_path), 'sess', [NoPngOpenCV()], bench_config,
                          input_format='png')
    assert 'No space left on device' in res.results['opencv'].error
    assert not [f for f in os.listdir(tmp_path) if f.startswith('temp_')]
