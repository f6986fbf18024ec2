"""Persisted benchmark reports (JSON, CSV, Markdown) and comparison of two runs."""
import csv
import json
import os
import time
from typing import Any, Dict, List, Optional

from benchmark import BenchmarkRun, CategoryResult, LibraryResult, determine_winners
from utils import format_bytes, format_time


def format_result_cell(res: Optional[LibraryResult], faster: bool = False, smaller: bool = False) -> str:
    """Human-readable table cell for one engine's result, with winner marks."""
    if res is None or not res.supported:
        return '×'
    if res.error is not None:
        return f"Error: {res.error}"
    text = format_time(res.time) + (" ✓ Faster" if faster else "")
    if res.conversion_time is not None:
        text += f" (+{format_time(res.conversion_time)} conversion)"
    text += f" | {format_bytes(res.size)}" + (" ✓ Smaller" if smaller else "")
    if res.memory_used is not None:
        text += f" | {res.memory_used} MB"
    if res.ssim is not None:
        text += f" | SSIM {res.ssim} / PSNR {res.psnr} dB"
    return text


def category_rows(category: CategoryResult) -> List[Dict[str, Any]]:
    """Flatten a category into one row per operation and engine."""
    rows = []
    for op in category.results:
        winners = determine_winners(op)
        for key, res in op.results.items():
            rows.append({
                'category': category.name,
                'operation': op.operation,
                'library': key,
                'supported': res.supported,
                'time_ms': res.time,
                'conversion_time_ms': res.conversion_time,
                'size_bytes': res.size,
                'memory_used_mb': res.memory_used,
                'ssim': res.ssim,
                'psnr': res.psnr,
                'faster': winners['time'] == key,
                'smaller': winners['size'] == key,
                'error': res.error,
            })
    return rows


def generate_benchmark_report(run: BenchmarkRun, output_dir: str = 'benchmark_reports', report_name: str = 'benchmark') -> Dict[str, str]:
    os.makedirs(output_dir, exist_ok=True)
    ts = int(time.time())
    base = f"{report_name}_{run.session_id}"
    json_path = os.path.join(output_dir, base + '.json')
    csv_path = os.path.join(output_dir, base + '.csv')
    md_path = os.path.join(output_dir, base + '.md')

    with open(json_path, 'w', encoding='utf-8') as f:
        payload = run.to_dict()
        payload['timestamp'] = ts
        json.dump(payload, f, indent=2)

    rows = [row for cat in run.categories for row in category_rows(cat)]
    fieldnames = ['category', 'operation', 'library', 'supported', 'time_ms', 'conversion_time_ms', 'size_bytes',
                  'memory_used_mb', 'ssim', 'psnr', 'faster', 'smaller', 'error']
    with open(csv_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)

    orig = run.original
    keys = [k for k in run.versions if k != 'python']
    with open(md_path, 'w', encoding='utf-8') as f:
        f.write(f"# Benchmark Report: {orig.get('filename')}\n\n")
        f.write(f"Image: {orig.get('width')}x{orig.get('height')} {orig.get('format')}, {orig.get('size')} bytes\n\n")
        f.write("Versions: " + ', '.join(f"{k} {v}" for k, v in run.versions.items()) + "\n\n")
        for cat in run.categories:
            f.write(f"## {cat.name}\n\n{cat.description}\n\n")
            f.write("| operation | " + " | ".join(keys) + " |\n")
            f.write("|---|" + "---:|" * len(keys) + "\n")
            for op in cat.results:
                cells = []
                for k in keys:
                    res = op.results.get(k)
                    if res is None or not res.supported:
                        cells.append('×')
                    elif res.error is not None:
                        cells.append(f"error: {res.error}")
                    else:
                        cells.append(f"{res.time} ms / {res.size} B")
                f.write(f"| {op.operation} | " + " | ".join(cells) + " |\n")
            f.write("\n")

    return {'json': json_path, 'csv': csv_path, 'md': md_path}


def _index_report(payload: Dict[str, Any]) -> Dict[tuple, Dict[str, Any]]:
    out = {}
    for cat in payload.get('categories', []):
        for op in cat.get('results', []):
            for key, res in op.items():
                if key == 'operation' or not isinstance(res, dict):
                    continue
                out[(op['operation'], key)] = res
    return out


def _delta(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return b - a


def compare_benchmark_reports(report1_path: str, report2_path: str, output_dir: str = 'benchmark_reports') -> Dict[str, str]:
    """
    Compare two JSON reports written by generate_benchmark_report.
    Deltas are report B minus report A, per operation and library.
    """
    if not os.path.exists(report1_path) or not os.path.exists(report2_path):
        raise FileNotFoundError("One of the comparison report paths does not exist")

    with open(report1_path, 'r', encoding='utf-8') as f:
        a = _index_report(json.load(f))
    with open(report2_path, 'r', encoding='utf-8') as f:
        b = _index_report(json.load(f))

    comparisons = []
    for operation, library in sorted(set(a) | set(b)):
        ra = a.get((operation, library)) or {}
        rb = b.get((operation, library)) or {}
        comp = {'operation': operation, 'library': library}
        for field_name in ('time', 'size', 'memoryUsed', 'ssim', 'psnr'):
            va, vb = ra.get(field_name), rb.get(field_name)
            comp[f'{field_name}_a'] = va
            comp[f'{field_name}_b'] = vb
            comp[f'{field_name}_delta'] = _delta(va, vb)
        comparisons.append(comp)

    os.makedirs(output_dir, exist_ok=True)
    out_json = os.path.join(output_dir, 'comparison_report.json')
    out_md = os.path.join(output_dir, 'comparison_report.md')
    with open(out_json, 'w', encoding='utf-8') as f:
        json.dump({'comparison': comparisons, 'report_a': report1_path, 'report_b': report2_path}, f, indent=2)

    with open(out_md, 'w', encoding='utf-8') as f:
        f.write("# Comparison Report\n\n")
        f.write(f"Report A: {report1_path}\n\n")
        f.write(f"Report B: {report2_path}\n\n")
        f.write("| operation | library | time_a | time_b | time_delta | size_delta | ssim_delta |\n")
        f.write("|---|---|---:|---:|---:|---:|---:|\n")
        for c in comparisons:
            f.write(f"| {c['operation']} | {c['library']} | {c['time_a']} | {c['time_b']} | {c['time_delta']} "
                    f"| {c['size_delta']} | {c['ssim_delta']} |\n")

    return {'json': out_json, 'md': out_md}
