import io
import os

import pytest

from config import BenchmarkConfig
from server import create_app


@pytest.fixture
def client(bench_config):
    app = create_app(bench_config)
    app.config['TESTING'] = True
    return app.test_client()


def _upload(path, mimetype='image/png', name=None):
    with open(path, 'rb') as f:
        data = f.read()
    return {'image': (io.BytesIO(data), name or os.path.basename(path), mimetype)}


def test_health(client):
    resp = client.get('/api/health')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['status'] == 'ok' and 'T' in body['timestamp']


def test_versions(client):
    body = client.get('/api/versions').get_json()
    assert set(body) == {'opencv', 'pillow', 'python'}


def test_missing_file_is_400(client):
    resp = client.post('/api/benchmark', data={}, content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'No image uploaded'}


def test_wrong_type_is_400(client, fixture_files):
    resp = client.post('/api/benchmark', data=_upload(fixture_files['text'], 'text/plain'),
                       content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid file type. Only JPEG, PNG, WebP, AVIF are allowed.'


def test_too_large_is_413(bench_config, sample_png):
    bench_config.max_upload_bytes = 100
    client = create_app(bench_config).test_client()
    resp = client.post('/api/benchmark', data=_upload(sample_png), content_type='multipart/form-data')
    assert resp.status_code == 413
    assert resp.get_json()['error'].startswith('File size too large. Maximum size is')


def test_default_size_limit_message(tmp_path):
    cfg = BenchmarkConfig(output_dir=str(tmp_path / 'o'), upload_dir=str(tmp_path / 'u'), max_upload_bytes=10)
    client = create_app(cfg).test_client()
    resp = client.post('/api/benchmark', data={'image': (io.BytesIO(b'x' * 100), 'a.png', 'image/png')},
                       content_type='multipart/form-data')
    assert resp.get_json()['error'] == 'File size too large. Maximum size is 10B.'


@pytest.mark.edge
def test_corrupted_upload_is_400(client, fixture_files):
    resp = client.post('/api/benchmark', data=_upload(fixture_files['corrupted']),
                       content_type='multipart/form-data')
    assert resp.status_code == 400
    assert 'error' in resp.get_json()


@pytest.mark.integration
def test_benchmark_roundtrip_and_static_outputs(client, sample_png, bench_config):
    resp = client.post('/api/benchmark', data=_upload(sample_png), content_type='multipart/form-data')
    assert resp.status_code == 200
    body = resp.get_json()
    assert len(body['categories']) == 3
    assert body['original']['format'] == 'png'
    assert os.listdir(bench_config.upload_dir)

    url = body['categories'][0]['results'][2]['pillow']['url']
    served = client.get(url)
    assert served.status_code == 200
    assert served.data[:2] == b'\xff\xd8'

    assert client.get('/output/nope/missing.jpg').status_code == 404


def test_create_app_leaves_caller_config_untouched(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = BenchmarkConfig(output_dir='out', upload_dir='up')
    app = create_app(cfg)
    assert cfg.output_dir == 'out' and cfg.upload_dir == 'up'
    assert app.config['BENCHMARK'].output_dir == str(tmp_path / 'out')
    assert os.path.isdir(tmp_path / 'up')
