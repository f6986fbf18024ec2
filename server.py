"""HTTP API for the benchmark: upload an image, get the comparison JSON back.

Generated outputs and uploads are served back so the UI can preview them.
"""
import argparse
import logging
import os
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from flask import Flask, jsonify, request, send_from_directory
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from benchmark import InvalidImageError, run_benchmark
from config import BenchmarkConfig
from engines import library_versions
from utils import format_bytes, is_allowed_mimetype

logger = logging.getLogger(__name__)

INVALID_TYPE_MESSAGE = 'Invalid file type. Only JPEG, PNG, WebP, AVIF are allowed.'


def _size_limit_label(limit: int) -> str:
    value, unit = format_bytes(limit).split(' ')
    if value.endswith('.0'):
        value = value[:-2]
    return value + unit


def create_app(config: BenchmarkConfig = None) -> Flask:
    config = config or BenchmarkConfig.from_env()
    config = replace(config, output_dir=os.path.abspath(config.output_dir),
                     upload_dir=os.path.abspath(config.upload_dir))
    config.ensure_dirs()

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = config.max_upload_bytes
    app.config['BENCHMARK'] = config

    too_large = f'File size too large. Maximum size is {_size_limit_label(config.max_upload_bytes)}.'

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(err):
        return jsonify({'error': too_large}), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(err):
        return jsonify({'error': err.description or err.name}), err.code

    @app.route('/api/benchmark', methods=['POST'])
    def benchmark():
        upload = request.files.get('image')
        if upload is None or not upload.filename:
            return jsonify({'error': 'No image uploaded'}), 400
        if len(request.files.getlist('image')) > 1:
            return jsonify({'error': 'Too many files. Only one file is allowed.'}), 400
        if not is_allowed_mimetype(upload.mimetype):
            return jsonify({'error': INVALID_TYPE_MESSAGE}), 400

        ext = os.path.splitext(upload.filename)[1].lower()
        input_path = os.path.join(config.upload_dir, f'{uuid.uuid4()}{ext}')
        upload.save(input_path)
        session_id = str(uuid.uuid4())

        size = os.path.getsize(input_path)
        logger.info('Starting benchmark for: %s (%.2f MB)', upload.filename, size / 1024.0 / 1024.0)
        try:
            run = run_benchmark(input_path, session_id=session_id, config=config)
        except InvalidImageError as e:
            logger.warning('Rejected upload %s: %s', upload.filename, e)
            return jsonify({'error': str(e)}), 400
        except Exception as e:
            logger.exception('Benchmark error')
            return jsonify({'error': str(e)}), 500
        logger.info('Benchmark completed: %s', session_id)
        return jsonify(run.to_dict())

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()})

    @app.route('/api/versions')
    def versions():
        return jsonify(library_versions())

    @app.route('/output/<path:filename>')
    def output_file(filename):
        return send_from_directory(config.output_dir, filename)

    @app.route('/uploads/<path:filename>')
    def upload_file(filename):
        return send_from_directory(config.upload_dir, filename)

    return app


def main(argv=None):
    config = BenchmarkConfig.from_env()
    p = argparse.ArgumentParser(description='Run the benchmark HTTP API')
    p.add_argument('--host', default='0.0.0.0')
    p.add_argument('--port', type=int, default=config.port)
    args = p.parse_args(argv)

    logging.basicConfig(level=config.log_level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app = create_app(config)
    logger.info('Backend server running on port %d', args.port)
    app.run(host=args.host, port=args.port, threaded=False)


if __name__ == '__main__':
    main()
