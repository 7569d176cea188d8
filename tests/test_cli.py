"""
test_cli.py
-----------
Command-line driver: parameter heuristic, file output, debug stages, fallback.
"""

import os

import cv2
import numpy as np
import pytest

import dehaze
from dehaze_cpu import NumpyOps
from dehaze_errors import DeviceFailure


@pytest.fixture
def hazy_file(tmp_path, hazy_scene):
    path = tmp_path / "scene_hazy.png"
    cv2.imwrite(str(path), hazy_scene)
    return path


# ---------------------------------------------------------------------------
# 1. Parameters
# ---------------------------------------------------------------------------

def test_default_params_scale_with_image():
    params = dehaze.default_params((480, 640, 3))
    assert params.patch_dark_channel == 2
    assert params.decomposition_size == 2
    assert params.refine_size == 10
    assert params.eps == pytest.approx(0.0002)
    assert params.min_transmission == pytest.approx(2 / 255)
    assert (params.beta, params.percen) == (0.5, 0.5)


def test_default_params_small_image_keeps_valid_floor():
    params = dehaze.default_params((96, 128))
    assert params.patch_dark_channel == 0
    assert params.decomposition_size == 1


def test_overrides_replace_defaults_and_none_is_ignored():
    params = dehaze.default_params((480, 640), beta=0.9, eps=None, refine_size=3)
    assert params.beta == 0.9
    assert params.refine_size == 3
    assert params.eps == pytest.approx(0.0002)


# ---------------------------------------------------------------------------
# 2. Single image
# ---------------------------------------------------------------------------

def test_single_image_both_backends(tmp_path, hazy_file):
    out = tmp_path / "out" / "result.png"
    assert dehaze.main(["--input", str(hazy_file), "--output", str(out),
                        "--backend", "both"]) == 0
    for tag in ("Cpu", "Gpu"):
        written = cv2.imread(str(tmp_path / "out" / f"result_{tag}.png"))
        assert written is not None and written.shape == (96, 128, 3)


def test_debug_writes_every_stage(tmp_path, hazy_file):
    out = tmp_path / "result.png"
    assert dehaze.main(["--input", str(hazy_file), "--output", str(out), "--debug"]) == 0
    for stage in ("decomposed", "dark_channel", "color_channel",
                  "transmission", "refined_transmission", "recovered"):
        assert (tmp_path / f"result_Cpu_{stage}.png").exists()


def test_missing_input_reports_error(tmp_path, capsys):
    code = dehaze.main(["--input", str(tmp_path / "nope.png"), "--output", str(tmp_path / "o.png")])
    assert code == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_invalid_override_reports_error(hazy_file, tmp_path, capsys):
    code = dehaze.main(["--input", str(hazy_file), "--output", str(tmp_path / "o.png"),
                        "--percen", "2.0"])
    assert code == 1
    assert "percen" in capsys.readouterr().out


def test_requires_input_and_output():
    with pytest.raises(SystemExit):
        dehaze.main([])


# ---------------------------------------------------------------------------
# 3. Directory mode with ground truth
# ---------------------------------------------------------------------------

def test_directory_with_ground_truth(tmp_path, hazy_scene, clear_scene, capsys):
    hazy_dir, gt_dir, out_dir = tmp_path / "hazy", tmp_path / "gt", tmp_path / "out"
    hazy_dir.mkdir()
    gt_dir.mkdir()
    cv2.imwrite(str(hazy_dir / "01_hazy.png"), hazy_scene)
    cv2.imwrite(str(gt_dir / "01_GT.png"), clear_scene)
    (hazy_dir / "notes.txt").write_text("not an image")

    code = dehaze.main(["--input_dir", str(hazy_dir), "--output_dir", str(out_dir),
                        "--gt_dir", str(gt_dir)])
    out = capsys.readouterr().out
    assert code == 0
    assert os.listdir(out_dir) == ["01_hazy_Cpu.png"]
    assert "PSNR=" in out and "AVERAGE (1 results)" in out


def test_directory_counts_failures(tmp_path, hazy_scene):
    hazy_dir = tmp_path / "hazy"
    hazy_dir.mkdir()
    cv2.imwrite(str(hazy_dir / "good.png"), hazy_scene)
    (hazy_dir / "broken.png").write_bytes(b"not a png")
    assert dehaze.process_directory(str(hazy_dir), str(tmp_path / "out"), ["cpu"],
                                    dehaze.build_parser().parse_args([])) == 1


# ---------------------------------------------------------------------------
# 4. Fallback
# ---------------------------------------------------------------------------

class BrokenDeviceOps(NumpyOps):
    name = "gpu"

    def from_host(self, array):
        raise DeviceFailure("no device memory")


@pytest.fixture
def broken_gpu(monkeypatch):
    def fake_backend(name, device=None):
        return BrokenDeviceOps() if name == 'gpu' else NumpyOps()
    monkeypatch.setattr(dehaze, "get_backend", fake_backend)


def test_fallback_reruns_on_cpu(broken_gpu, hazy_scene):
    params = dehaze.default_params(hazy_scene.shape)
    result, used = dehaze.dehaze_array(hazy_scene, params, 'gpu', fallback=True)
    assert used == 'cpu'
    assert result.image.shape == hazy_scene.shape


def test_without_fallback_failure_propagates(broken_gpu, hazy_scene):
    params = dehaze.default_params(hazy_scene.shape)
    with pytest.raises(DeviceFailure):
        dehaze.dehaze_array(hazy_scene, params, 'gpu')


def test_to_uint8_rounds_and_clips():
    img = np.array([[[-0.5, 0.5, 2.0]]], dtype=np.float32)
    np.testing.assert_array_equal(dehaze.to_uint8(img), [[[0, 128, 255]]])


def test_fallback_ignores_hook_errors(hazy_scene):
    """A broken --debug hook surfaces instead of triggering the cpu rerun."""
    def hook(stage, image):
        raise RuntimeError("disk full")

    params = dehaze.default_params(hazy_scene.shape)
    with pytest.raises(RuntimeError, match="disk full") as info:
        dehaze.dehaze_array(hazy_scene, params, 'gpu', fallback=True, hook=hook)
    assert not isinstance(info.value, DeviceFailure)
