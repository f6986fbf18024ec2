"""Charts and side-by-side previews for benchmark results."""
from typing import List, Optional, Sequence

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from PIL import Image, ImageDraw

from benchmark import CategoryResult

ENGINE_COLORS = {'opencv': '#f0883e', 'pillow': '#58a6ff'}


def create_comparison_chart(category: CategoryResult, engine_keys: Optional[Sequence[str]] = None):
    """Grouped bar chart of time (ms) and output size (KB) per operation."""
    ops = [op.operation for op in category.results]
    if engine_keys is None:
        engine_keys = []
        for op in category.results:
            for k in op.results:
                if k not in engine_keys:
                    engine_keys.append(k)

    fig, axes = plt.subplots(1, 2, figsize=(10, max(3, 0.6 * len(ops) + 1)))
    bar_h = 0.8 / max(1, len(engine_keys))
    for idx, key in enumerate(engine_keys):
        times = []
        sizes = []
        for op in category.results:
            res = op.results.get(key)
            ok = res is not None and res.supported and res.error is None
            times.append(res.time if ok and res.time is not None else 0)
            sizes.append(res.size / 1024.0 if ok and res.size is not None else 0)
        ys = [i + idx * bar_h for i in range(len(ops))]
        color = ENGINE_COLORS.get(key)
        axes[0].barh(ys, times, height=bar_h, label=key, color=color)
        axes[1].barh(ys, sizes, height=bar_h, label=key, color=color)

    centers = [i + bar_h * (len(engine_keys) - 1) / 2.0 for i in range(len(ops))]
    for ax, title in ((axes[0], 'Time (ms)'), (axes[1], 'Size (KB)')):
        ax.set_yticks(centers)
        ax.set_yticklabels(ops)
        ax.invert_yaxis()
        ax.set_title(title)
    axes[1].set_yticklabels([])
    axes[0].legend(loc='lower right')
    fig.suptitle(category.name)
    plt.tight_layout()
    return fig


def create_side_by_side_preview(image_paths: List[Optional[str]], labels: List[str], max_height: int = 400) -> Image.Image:
    """Paste the given outputs next to each other, scaled to a common height."""
    tiles = []
    for path, label in zip(image_paths, labels):
        if path is None:
            continue
        with Image.open(path) as im:
            im = im.convert('RGB')
            scale = min(1.0, max_height / float(im.height))
            tile = im.resize((max(1, int(im.width * scale)), max(1, int(im.height * scale))))
        ImageDraw.Draw(tile).text((6, 6), label, fill=(255, 0, 0))
        tiles.append(tile)

    if not tiles:
        raise ValueError('No images to compare')

    height = max(t.height for t in tiles)
    combined = Image.new('RGB', (sum(t.width for t in tiles), height), (255, 255, 255))
    x = 0
    for t in tiles:
        combined.paste(t, (x, 0))
        x += t.width
    return combined
