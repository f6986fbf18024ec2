import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'fixtures'))

from generate_fixtures import create_all, make_gradient  # noqa: E402
from config import BenchmarkConfig  # noqa: E402


@pytest.fixture
def fixture_files(tmp_path):
    return create_all(str(tmp_path / 'fixtures'))


@pytest.fixture
def sample_png(fixture_files):
    return fixture_files['png']


@pytest.fixture
def gradient_image():
    return make_gradient((120, 90))


@pytest.fixture
def bench_config(tmp_path):
    return BenchmarkConfig(output_dir=str(tmp_path / 'output'), upload_dir=str(tmp_path / 'uploads'),
                           target_width=80, target_height=60, memory_sample_interval=0.001)
