"""
dehaze.py - Remove haze from images with the quadtree Dark Channel Prior.

Runs the reference (cpu: numpy/OpenCV) path, the accelerated (gpu: torch) path,
or both on every image. Results are written as <name>_Cpu.png / <name>_Gpu.png.

Usage:
    python dehaze.py --input hazy.jpg --output results/hazy.png --backend both
    python dehaze.py --input_dir data/dataset --output_dir results --backend gpu --fallback
    python dehaze.py --input_dir data/dataset --output_dir results --gt_dir data/hazefree --debug
"""

import argparse
import glob
import logging
import os

import cv2
import numpy as np

from dehaze_errors import DehazeError, DeviceFailure
from dehaze_params import DehazeParams
from dehaze_pipeline import DehazePipeline, get_backend
from evaluate import IMAGE_EXTS, compute_metrics, find_gt_match

BACKEND_TAGS = {'cpu': 'Cpu', 'gpu': 'Gpu'}


# ==================== Image I/O ====================

def load_image(path):
    """Read a BGR uint8 image."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Image not found: {path}")
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError(f"cv2 cannot load image: {path}")
    return img


def to_uint8(image):
    return (np.clip(image, 0.0, 1.0) * 255.0).round().astype(np.uint8)


def save_image(image, path):
    """Write a [0, 1] float image (or uint8) as 8-bit."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    out = image if image.dtype == np.uint8 else to_uint8(image)
    if not cv2.imwrite(path, out):
        raise ValueError(f"cv2 cannot write image: {path}")


# ==================== Parameters ====================

def default_params(shape, **overrides):
    """
    Parameters scaled to the image size. `overrides` set to None are ignored.

    patch = 1% of the shorter side + 1; the dark-channel radius and quadtree
    floor are half of it, the guided-filter radius twice it.
    """
    h, w = shape[:2]
    patch = int(min(h, w) * 0.01 + 1)
    values = dict(
        beta=0.5,
        patch_dark_channel=int(patch * 0.5),
        decomposition_size=max(1, int(patch * 0.5)),
        min_transmission=2 / 255,
        percen=0.5,
        refine_size=patch * 2,
        eps=0.001 / patch,
    )
    values.update({k: v for k, v in overrides.items() if v is not None})
    return DehazeParams(**values)


def stage_writer(prefix):
    """Hook that saves every intermediate stage as <prefix>_<stage>.png."""
    def write(stage, image):
        save_image(image, f"{prefix}_{stage}.png")
    return write


# ==================== Dehazing ====================

def dehaze_array(img_bgr, params, backend='cpu', fallback=False, hook=None):
    """
    Returns (DehazeResult, backend actually used). With fallback=True a
    DeviceFailure on the gpu path is retried once on the cpu path.
    """
    try:
        return DehazePipeline(get_backend(backend), hook=hook).run(img_bgr, params), backend
    except DeviceFailure as e:
        if not fallback or backend == 'cpu':
            raise
        print(f"    [WARN] {e} - rerunning on cpu")
        return DehazePipeline(get_backend('cpu'), hook=hook).run(img_bgr, params), 'cpu'


def process_single(input_path, output_path, backends, args):
    """Dehaze one file with every requested backend. Returns the list of metric rows."""
    img = load_image(input_path)
    overrides = dict(beta=args.beta, patch_dark_channel=args.patch,
                     decomposition_size=args.decomposition, min_transmission=args.min,
                     percen=args.percen, refine_size=args.refine, eps=args.eps)
    params = default_params(img.shape, **overrides)

    root, ext = os.path.splitext(output_path)
    ext = ext or '.png'
    gt_path = find_gt_match(os.path.basename(input_path), args.gt_dir) if args.gt_dir else None

    rows = []
    for backend in backends:
        out_root = f"{root}_{BACKEND_TAGS[backend]}"
        hook = stage_writer(out_root) if args.debug else None
        result, used = dehaze_array(img, params, backend, fallback=args.fallback, hook=hook)

        out_path = out_root + ext
        dehazed = to_uint8(result.image)
        save_image(dehazed, out_path)
        light = ", ".join(f"{v:.3f}" for v in result.atmospheric_light)
        print(f"    [{used}] A=({light}) -> {out_path}")

        if gt_path is not None:
            gt_img = cv2.imread(gt_path)
            if gt_img is None:
                print(f"    [ERROR] Could not read GT {gt_path}")
                continue
            scores = compute_metrics(dehazed, gt_img)
            print(f"    [{used}] PSNR={scores['psnr']:.4f}  SSIM={scores['ssim']:.4f}")
            rows.append({'file': os.path.basename(out_path), **scores})
    return rows


def process_directory(input_dir, output_dir, backends, args):
    images = sorted(glob.glob(os.path.join(input_dir, '*.*')))
    images = [f for f in images if os.path.splitext(f)[1].lower() in IMAGE_EXTS]

    rows, failed = [], 0
    for i, img_path in enumerate(images):
        filename = os.path.basename(img_path)
        print(f"  [{i + 1}/{len(images)}] {filename}...")
        out_path = os.path.join(output_dir, os.path.splitext(filename)[0] + '.png')
        try:
            rows.extend(process_single(img_path, out_path, backends, args))
        except (OSError, ValueError, DehazeError) as e:
            print(f"    [ERROR] {e}")
            failed += 1

    print(f"\n  Processed {len(images) - failed}/{len(images)} images.")
    if rows:
        avg_psnr = sum(r['psnr'] for r in rows) / len(rows)
        avg_ssim = sum(r['ssim'] for r in rows) / len(rows)
        print(f"  AVERAGE ({len(rows)} results): PSNR = {avg_psnr:.4f}  |  SSIM = {avg_ssim:.4f}")
    return failed


def build_parser():
    parser = argparse.ArgumentParser(description="Quadtree Dark Channel Prior dehazing (cpu / gpu)")
    parser.add_argument('--input', default=None, help="Path to a single hazy image.")
    parser.add_argument('--output', default=None, help="Output path; _Cpu/_Gpu is appended to the name.")
    parser.add_argument('--input_dir', default=None, help="Directory of hazy images.")
    parser.add_argument('--output_dir', default=None, help="Directory for dehazed images.")
    parser.add_argument('--backend', default='cpu', choices=['cpu', 'gpu', 'both'],
                        help="Execution path (default: cpu)")
    parser.add_argument('--fallback', action='store_true',
                        help="Rerun on cpu when the gpu path reports a device failure.")
    parser.add_argument('--debug', action='store_true',
                        help="Save every intermediate stage next to the output.")
    parser.add_argument('--gt_dir', default=None, help="Ground-truth directory for PSNR/SSIM.")
    parser.add_argument('--verbose', action='store_true', help="Show pipeline log messages.")

    tuning = parser.add_argument_group("parameters (default: derived from the image size)")
    tuning.add_argument('--beta', type=float, default=None, help="Haze coefficient.")
    tuning.add_argument('--patch', type=int, default=None, help="Dark-channel erosion radius.")
    tuning.add_argument('--decomposition', type=int, default=None, help="Quadtree minimum window.")
    tuning.add_argument('--min', type=float, default=None, help="Transmission floor.")
    tuning.add_argument('--percen', type=float, default=None,
                        help="Fraction of brightest dark-channel pixels used for A.")
    tuning.add_argument('--refine', type=int, default=None, help="Guided-filter radius.")
    tuning.add_argument('--eps', type=float, default=None, help="Guided-filter regularizer.")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="[%(asctime)s] [%(levelname)-5s] %(name)s: %(message)s",
                        datefmt="%H:%M:%S")
    backends = ['cpu', 'gpu'] if args.backend == 'both' else [args.backend]

    print(f"\n{'=' * 60}")
    print(f"  QUADTREE DARK CHANNEL DEHAZING")
    print(f"{'=' * 60}")
    print(f"  Backend : {args.backend}{' (cpu fallback)' if args.fallback else ''}")
    print(f"{'=' * 60}\n")

    if args.input and args.output:
        try:
            process_single(args.input, args.output, backends, args)
        except (OSError, ValueError, DehazeError) as e:
            print(f"  [ERROR] {e}")
            return 1
        return 0
    if args.input_dir and args.output_dir:
        return 1 if process_directory(args.input_dir, args.output_dir, backends, args) else 0

    parser.error("provide either --input/--output or --input_dir/--output_dir")


if __name__ == '__main__':
    raise SystemExit(main())
