"""Streamlit front end: upload an image, run the benchmark and compare the two libraries.

Runs in-process by default, or against a running API when BENCHMARK_API_URL is set.
"""
import os
import uuid

import streamlit as st

from benchmark import BenchmarkRun, determine_winners, run_benchmark
from config import BenchmarkConfig
from engines import default_engines, library_versions
from reports import format_result_cell
from utils import format_bytes, format_time, post_benchmark

# Optional visualization import
try:
    from visualization import create_comparison_chart, create_side_by_side_preview
except ImportError:
    create_comparison_chart = None
    create_side_by_side_preview = None

LARGE_FILE_BYTES = 100 * 1024 * 1024

config = BenchmarkConfig.from_env()
api_url = os.environ.get('BENCHMARK_API_URL')
engines = default_engines()
labels = {e.key: e.label for e in engines}

# --- Streamlit Page Configuration ---
st.set_page_config(layout="wide")
st.title(" vs ".join(e.label for e in engines))
st.caption("Real-time benchmark comparison of image processing libraries")


def output_location(url: str):
    """Map an /output/... URL to something st.image can show."""
    if not url:
        return None
    if api_url:
        return api_url.rstrip('/') + url
    rel = url[len('/output/'):] if url.startswith('/output/') else url.lstrip('/')
    return os.path.join(config.output_dir, *rel.split('/'))


_previous = st.session_state.get('results')
versions = _previous.versions if _previous is not None else library_versions(engines)
st.markdown(" ".join(f"`{labels.get(k, k)} {v}`" for k, v in versions.items()))

uploaded_file = st.file_uploader(
    "Drag & drop an image, or click to select (JPEG, PNG, WebP, AVIF)",
    type=["jpg", "jpeg", "png", "webp", "avif"]
)

if uploaded_file is not None:
    st.write(f"**{uploaded_file.name}** ({format_bytes(uploaded_file.size)})")
    if uploaded_file.size > LARGE_FILE_BYTES:
        st.warning("Large file. Processing may take some time.")

    if st.button("Run benchmark"):
        st.session_state['results'] = None
        with st.spinner("Running benchmark..."):
            try:
                data = uploaded_file.getvalue()
                if api_url:
                    payload = post_benchmark(api_url, uploaded_file.name, data, uploaded_file.type)
                    st.session_state['results'] = BenchmarkRun.from_dict(payload)
                else:
                    config.ensure_dirs()
                    ext = os.path.splitext(uploaded_file.name)[1].lower()
                    input_path = os.path.join(config.upload_dir, f"{uuid.uuid4()}{ext}")
                    with open(input_path, 'wb') as f:
                        f.write(data)
                    st.session_state['results'] = run_benchmark(input_path, config=config, engines=engines)
            except Exception as e:
                st.error(f"Error: {e}")

results = st.session_state.get('results')
if results is not None:
    orig = results.original
    st.subheader("Original Image")
    st.write(f"{orig.get('filename')} | {orig.get('width')} × {orig.get('height')} | "
             f"{format_bytes(orig.get('size'))} | {(orig.get('format') or '').upper()}")

    preview_options = []
    for category in results.categories:
        st.header(category.name)
        st.caption(category.description)
        rows = []
        for op in category.results:
            winners = determine_winners(op)
            row = {'Operation': op.operation}
            for e in engines:
                row[e.label] = format_result_cell(op.results.get(e.key), winners['time'] == e.key,
                                           winners['size'] == e.key)
            rows.append(row)
            preview_options.append(op)
        st.dataframe(rows, use_container_width=True)

        if create_comparison_chart is not None:
            try:
                st.pyplot(create_comparison_chart(category, [e.key for e in engines]))
            except Exception as e:
                st.info(f"Chart unavailable: {e}")

    st.header("Generated Image Preview")
    selected = st.selectbox("Operation", preview_options, format_func=lambda op: op.operation)
    if selected is not None:
        cols = st.columns(len(engines))
        for col, e in zip(cols, engines):
            res = selected.results.get(e.key)
            with col:
                st.subheader(e.label)
                if res is None or not res.supported:
                    st.info("Not supported")
                elif res.error is not None:
                    st.error(f"Error: {res.error}")
                else:
                    st.caption(f"{format_time(res.time)} / {format_bytes(res.size)}")
                    st.image(output_location(res.url), use_container_width=True)

        if not api_url and create_side_by_side_preview is not None and st.checkbox("Show side by side", value=False):
            done = [(output_location(r.url), labels.get(k, k)) for k, r in selected.results.items()
                    if r.supported and r.error is None and r.url]
            try:
                montage = create_side_by_side_preview([p for p, _ in done], [label for _, label in done])
                st.image(montage, caption=selected.operation, use_container_width=True)
            except Exception as e:
                st.error(f"Side-by-side preview failed: {e}")
