"""
app.py - Flask web dashboard for quadtree Dark Channel Prior dehazing.

Endpoints:
    GET  /                        -> Serves index.html
    POST /dehaze                  -> Dehazes the uploaded image and returns JSON
    GET  /web_results/<filename>  -> Serves dehazed results

Form fields for POST /dehaze:
    hazy_image : image file (required)
    backend    : 'cpu' or 'gpu' (default: cpu; gpu falls back to cpu on device failure)
    gt_image   : optional ground truth, adds PSNR/SSIM to the response

Usage:
    python app.py
    Then open http://localhost:5000 in your browser.
"""

import os
import uuid

import cv2
import numpy as np
from flask import Flask, jsonify, request, send_file, send_from_directory

from dehaze import default_params, dehaze_array, save_image, to_uint8
from dehaze_errors import DehazeError
from evaluate import compute_metrics

# ==================== Configuration ====================
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
RESULTS_DIR = os.path.join(BASE_DIR, 'web_results')
BACKENDS = ('cpu', 'gpu')

app = Flask(__name__)


def decode_upload(file_storage):
    """Decode an uploaded file to a BGR uint8 image, or None."""
    data = np.frombuffer(file_storage.read(), dtype=np.uint8)
    if data.size == 0:
        return None
    return cv2.imdecode(data, cv2.IMREAD_COLOR)


# ==================== Routes ====================

@app.route('/')
def index():
    return send_file(os.path.join(BASE_DIR, 'index.html'))


@app.route('/web_results/<path:filename>')
def serve_result(filename):
    return send_from_directory(RESULTS_DIR, filename)


@app.route('/dehaze', methods=['POST'])
def dehaze():
    if 'hazy_image' not in request.files:
        return jsonify({'error': 'No hazy image uploaded'}), 400
    hazy_file = request.files['hazy_image']
    if hazy_file.filename == '':
        return jsonify({'error': 'Empty filename'}), 400

    backend = request.form.get('backend', 'cpu')
    if backend not in BACKENDS:
        return jsonify({'error': f"Unknown backend '{backend}'"}), 400

    img_bgr = decode_upload(hazy_file)
    if img_bgr is None:
        return jsonify({'error': 'Could not read the uploaded image'}), 400

    print(f"  [Dehaze] Processing {hazy_file.filename} | Backend: {backend}")
    try:
        result, used = dehaze_array(img_bgr, default_params(img_bgr.shape), backend, fallback=True)
    except DehazeError as e:
        return jsonify({'error': str(e)}), 400
    if used != backend:
        print(f"  [Dehaze] {backend} unavailable, used {used}")

    dehazed = to_uint8(result.image)
    result_filename = f'{uuid.uuid4().hex[:8]}_dehazed.png'
    save_image(dehazed, os.path.join(RESULTS_DIR, result_filename))

    response = {
        'dehazed_url': f'/web_results/{result_filename}',
        'backend': used,
        'atmospheric_light': [round(v, 4) for v in result.atmospheric_light],
    }

    gt_file = request.files.get('gt_image')
    if gt_file is not None and gt_file.filename != '':
        gt_bgr = decode_upload(gt_file)
        if gt_bgr is not None:
            scores = compute_metrics(dehazed, gt_bgr)
            response['scores'] = {'psnr': f"{scores['psnr']:.2f}", 'ssim': f"{scores['ssim']:.4f}"}
            print(f"  [Metrics] PSNR={response['scores']['psnr']}, SSIM={response['scores']['ssim']}")

    print(f"  [Dehaze] Result saved: {result_filename}")
    return jsonify(response)


# ==================== Main ====================

if __name__ == '__main__':
    print(f"\n{'=' * 50}")
    print(f"  Image Dehazing Dashboard")
    print(f"{'=' * 50}")
    print(f"  Method : Quadtree Dark Channel Prior + guided filter")
    print(f"  URL    : http://localhost:5000")
    print(f"{'=' * 50}\n")

    app.run(host='0.0.0.0', port=5000, debug=False)
