from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest
from pytest import approx

from cammeasure.cli import main as cli_main


def _generate(tmp_path: Path, scene: str = "square") -> Path:
    output_npy = tmp_path / f"{scene}.npy"
    exit_code = cli_main(
        [
            "generate-synthetic-frame",
            "--scene",
            scene,
            "--width",
            "200",
            "--height",
            "200",
            "--object-size",
            "50",
            "--output-npy",
            str(output_npy),
        ]
    )
    assert exit_code == 0
    return output_npy


def test_cli_generate_synthetic_frame_writes_array_and_boxes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output_npy = tmp_path / "frames" / "square.npy"
    output_json = tmp_path / "frames" / "square.json"

    exit_code = cli_main(
        [
            "generate-synthetic-frame",
            "--width",
            "120",
            "--height",
            "80",
            "--object-size",
            "20",
            "--output-npy",
            str(output_npy),
            "--output-json",
            str(output_json),
        ]
    )

    assert exit_code == 0
    array = np.load(output_npy)
    assert array.shape == (80, 120, 4)
    assert array.dtype == np.uint8
    payload = json.loads(output_json.read_text(encoding="utf-8"))
    assert payload["boxes"] == [{"x": 50, "y": 30, "width": 20, "height": 20}]
    assert "Synthetic frame generated" in capsys.readouterr().out


def test_cli_detect_frame_measures_square(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    frame_path = _generate(tmp_path)
    output_json = tmp_path / "result.json"
    capsys.readouterr()

    exit_code = cli_main(
        [
            "detect-frame",
            str(frame_path),
            "--pixels-per-mm",
            "5",
            "--output-json",
            str(output_json),
        ]
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Outcome: detected (geometric)" in out
    assert "Objects: 1" in out

    payload = json.loads(output_json.read_text(encoding="utf-8"))
    assert payload["input_path"] == str(frame_path)
    assert payload["objects"][0]["dimensions"]["unit"] == "mm"
    assert payload["objects"][0]["dimensions"]["width"] == approx(10.0, abs=0.6)


def test_cli_detect_frame_with_placeholder_fallback(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    frame_path = _generate(tmp_path, scene="flat")
    capsys.readouterr()

    exit_code = cli_main(["detect-frame", str(frame_path), "--fallback", "placeholder"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Outcome: fallback (placeholder)" in out
    assert "placeholder-0" in out


def test_cli_detect_frame_uses_config_profile(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    frame_path = _generate(tmp_path, scene="two_squares")
    profile = tmp_path / "profile.json"
    profile.write_text(json.dumps({"max_objects": 2}), encoding="utf-8")
    capsys.readouterr()

    exit_code = cli_main(["detect-frame", str(frame_path), "--config", str(profile)])

    assert exit_code == 0
    assert "Objects: 2" in capsys.readouterr().out


def test_cli_detect_frame_missing_input(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_main(["detect-frame", str(tmp_path / "missing.npy")])

    assert exit_code == 1
    assert "ERROR: input not found" in capsys.readouterr().out


def test_cli_detect_frame_rejects_malformed_array(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    bad = tmp_path / "bad.npy"
    np.save(bad, np.zeros((4, 4), dtype=np.float32))

    exit_code = cli_main(["detect-frame", str(bad)])

    assert exit_code == 1
    assert "ERROR:" in capsys.readouterr().out


def test_cli_detect_frame_reports_missing_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    frame_path = _generate(tmp_path)
    capsys.readouterr()

    exit_code = cli_main(["detect-frame", str(frame_path), "--config", str(tmp_path / "missing.json")])

    assert exit_code == 1
    assert "ERROR:" in capsys.readouterr().out


def test_cli_detect_frame_rejects_invalid_calibration(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    frame_path = _generate(tmp_path)
    capsys.readouterr()

    exit_code = cli_main(["detect-frame", str(frame_path), "--pixels-per-mm", "0"])

    assert exit_code == 1
    assert "ERROR:" in capsys.readouterr().out


def test_cli_generate_flat_frame_smaller_than_default_object(tmp_path: Path) -> None:
    output_npy = tmp_path / "flat.npy"

    exit_code = cli_main(
        ["generate-synthetic-frame", "--scene", "flat", "--width", "50", "--height", "50", "--output-npy", str(output_npy)]
    )

    assert exit_code == 0
    assert np.load(output_npy).shape == (50, 50, 4)


def test_cli_generate_rejects_oversized_object(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output_npy = tmp_path / "square.npy"

    exit_code = cli_main(
        ["generate-synthetic-frame", "--width", "50", "--height", "50", "--output-npy", str(output_npy)]
    )

    assert exit_code == 1
    assert "ERROR: object_size must fit inside the frame" in capsys.readouterr().out
    assert not output_npy.exists()
