"""
Generate synthetic photo-like images for running the benchmark locally.
Creates gradients, shapes and noise in every accepted input format.
Run: python scripts/generate_test_images.py [--outdir test_images]
"""
import argparse
import os

import numpy as np
from PIL import Image, ImageDraw

SIZES = [(640, 480), (1920, 1080), (4000, 3000)]
FORMATS = [('jpg', 'JPEG', {'quality': 92}), ('png', 'PNG', {}), ('webp', 'WEBP', {'quality': 90}),
           ('avif', 'AVIF', {'quality': 80})]


def make_photo_like(w, h, seed=0):
    rng = np.random.RandomState(seed)
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float32)
    r = 255 * xx / max(1, w - 1)
    g = 255 * yy / max(1, h - 1)
    b = 128 + 127 * np.sin(xx / 37.0) * np.cos(yy / 23.0)
    arr = np.stack([r, g, b], axis=-1)
    arr += rng.normal(0, 12, size=arr.shape)
    img = Image.fromarray(np.clip(arr, 0, 255).astype(np.uint8), 'RGB')

    d = ImageDraw.Draw(img)
    for _ in range(12):
        x0, y0 = rng.randint(0, w), rng.randint(0, h)
        rad = rng.randint(max(4, min(w, h) // 40), max(8, min(w, h) // 6))
        color = tuple(int(c) for c in rng.randint(0, 255, size=3))
        d.ellipse([x0 - rad, y0 - rad, x0 + rad, y0 + rad], fill=color, outline=(0, 0, 0))
    return img


def main():
    p = argparse.ArgumentParser()
    p.add_argument('--outdir', default=os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'test_images')))
    args = p.parse_args()
    os.makedirs(args.outdir, exist_ok=True)

    for i, (w, h) in enumerate(SIZES):
        img = make_photo_like(w, h, seed=i)
        for ext, fmt, opts in FORMATS:
            out_path = os.path.join(args.outdir, f'sample_{w}x{h}.{ext}')
            try:
                img.save(out_path, format=fmt, **opts)
            except (KeyError, OSError) as e:
                print('SKIP', out_path, e)
                continue
            print('WROTE', out_path)

    # RGBA source to exercise alpha handling
    rgba = make_photo_like(800, 600, seed=99).convert('RGBA')
    rgba.putalpha(Image.linear_gradient('L').resize((800, 600)))
    out_path = os.path.join(args.outdir, 'sample_alpha_800x600.png')
    rgba.save(out_path)
    print('WROTE', out_path)


if __name__ == '__main__':
    main()
