"""
evaluate.py - PSNR / SSIM of dehazed results against ground-truth images.

Usage:
    python evaluate.py --results_dir results/dehazed --gt_dir data/hazefree
"""

import argparse
import glob
import os
import re

import cv2
from skimage.metrics import peak_signal_noise_ratio as psnr
from skimage.metrics import structural_similarity as ssim

IMAGE_EXTS = ('.png', '.jpg', '.jpeg', '.bmp')
_SUFFIXES = re.compile(r'(_hazy|_fog|_input|_Cpu|_Gpu)', re.IGNORECASE)


def find_gt_match(result_filename, gt_dir):
    """
    Locate the ground truth for a result file. Tried in order:
      - same filename                      31.png       -> 31.png
      - 'hazy' replaced by 'GT'            01_hazy.png  -> 01_GT.png
      - known suffixes stripped            ih31_hazy_Cpu.png -> ih31.png
      - same leading number                31_outdoor.png    -> 31.jpg
    Returns the path, or None.
    """
    basename, ext = os.path.splitext(result_filename)
    candidate_exts = [ext] + [e for e in IMAGE_EXTS if e != ext.lower()]

    exact = os.path.join(gt_dir, result_filename)
    if os.path.exists(exact):
        return exact

    stem = re.sub(r'_(Cpu|Gpu)$', '', basename)
    names = []
    if re.search('hazy', stem, re.IGNORECASE):
        names.append(re.sub('hazy', 'GT', stem, flags=re.IGNORECASE))
    names.append(_SUFFIXES.sub('', stem))
    for name in names:
        for candidate_ext in candidate_exts:
            candidate = os.path.join(gt_dir, name + candidate_ext)
            if os.path.exists(candidate):
                return candidate

    digits = re.search(r'(\d+)', stem)
    if digits:
        for gt_file in sorted(os.listdir(gt_dir)):
            gt_digits = re.search(r'(\d+)', gt_file)
            if gt_digits and gt_digits.group(1) == digits.group(1):
                return os.path.join(gt_dir, gt_file)
    return None


def compute_metrics(result_bgr, gt_bgr):
    """PSNR and SSIM of two uint8 BGR images, compared in RGB at GT size."""
    if result_bgr.shape != gt_bgr.shape:
        result_bgr = cv2.resize(result_bgr, (gt_bgr.shape[1], gt_bgr.shape[0]),
                                interpolation=cv2.INTER_CUBIC)
    r = cv2.cvtColor(result_bgr, cv2.COLOR_BGR2RGB)
    g = cv2.cvtColor(gt_bgr, cv2.COLOR_BGR2RGB)
    return {
        'psnr': float(psnr(g, r, data_range=255)),
        'ssim': float(ssim(g, r, channel_axis=2, data_range=255)),
    }


def evaluate(results_dir, gt_dir):
    print(f"\n{'=' * 50}")
    print(f"  PSNR & SSIM Evaluation")
    print(f"{'=' * 50}")
    print(f"  Results : {results_dir}")
    print(f"  GT      : {gt_dir}")
    print(f"{'=' * 50}\n")

    rows = []
    for res_path in sorted(glob.glob(os.path.join(results_dir, '*.*'))):
        filename = os.path.basename(res_path)
        if os.path.splitext(filename)[1].lower() not in IMAGE_EXTS:
            continue

        gt_path = find_gt_match(filename, gt_dir)
        if gt_path is None:
            print(f"  [SKIP] {filename} - no GT match found")
            continue

        res_img = cv2.imread(res_path)
        gt_img = cv2.imread(gt_path)
        if res_img is None or gt_img is None:
            print(f"  [ERROR] Could not read {filename} or its GT. Skipping.")
            continue

        scores = compute_metrics(res_img, gt_img)
        rows.append({'file': filename, 'gt': os.path.basename(gt_path), **scores})

    if not rows:
        print("  No matching image pairs found to evaluate.\n")
        return rows

    print(f"  {'Result File':<25} {'GT File':<20} {'PSNR':>10} {'SSIM':>10}")
    print(f"  {'-' * 25} {'-' * 20} {'-' * 10} {'-' * 10}")
    for r in rows:
        print(f"  {r['file']:<25} {r['gt']:<20} {r['psnr']:>10.4f} {r['ssim']:>10.4f}")

    avg_psnr = sum(r['psnr'] for r in rows) / len(rows)
    avg_ssim = sum(r['ssim'] for r in rows) / len(rows)
    print(f"\n  {'=' * 67}")
    print(f"  AVERAGE ({len(rows)} images):{'':>18} {avg_psnr:>10.4f} {avg_ssim:>10.4f}")
    print(f"  {'=' * 67}\n")
    return rows


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Evaluate dehazing results with PSNR and SSIM.")
    parser.add_argument('--results_dir', required=True, help="Directory of dehazed images.")
    parser.add_argument('--gt_dir', required=True, help="Directory of ground-truth (clear) images.")
    args = parser.parse_args()

    evaluate(args.results_dir, args.gt_dir)
