import csv
import os

import cv2
import numpy as np
import pytest

from marker_coverage.batch import (
    REPORT_COLUMNS,
    collect_images,
    detect_file,
    process_image,
    process_images,
    write_report,
)
from marker_coverage import cli
from marker_coverage.cli import main
from marker_coverage.config import Params


def test_collect_images(tmp_path, scene_file):
    sub = tmp_path / "nested"
    sub.mkdir()
    (sub / "b.JPG").write_bytes(b"x")
    (tmp_path / "notes.txt").write_text("skip me")
    found = collect_images(str(tmp_path))
    assert found == sorted(found)
    assert scene_file in found
    assert str(sub / "b.JPG") in found
    assert not any(p.endswith(".txt") for p in found)
    assert collect_images(scene_file) == [scene_file]


def test_collect_images_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect_images(str(tmp_path / "nope"))


def test_detect_file_unreadable(broken_file):
    row, out = detect_file(broken_file, Params())
    assert out is None
    assert row.found == 0
    assert row.coverage_percent == -1
    assert row.error


def test_process_images_and_report(tmp_path, scene_file, broken_file):
    rows = list(process_images([scene_file, broken_file]))
    assert [r.found for r in rows] == [1, 0]
    assert 23 <= rows[0].coverage_percent <= 27
    assert rows[0].summary() == f"{scene_file} {rows[0].coverage_percent}%"

    csv_path = write_report(rows, str(tmp_path / "out" / "report.csv"))
    with open(csv_path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        assert reader.fieldnames == REPORT_COLUMNS
        data = list(reader)
    assert len(data) == 2
    assert data[0]["found"] == "1"
    assert data[1]["error"] == "unreadable image"


def test_process_images_saves_debug(tmp_path, scene_file):
    out_dir = tmp_path / "dbg"
    (row,) = process_images([scene_file], save_debug=True, out_dir=str(out_dir))
    for key in ("mask", "quad", "warp", "crop", "clip"):
        path = getattr(row, f"{key}_path")
        assert path.startswith(str(out_dir))
        assert os.path.isfile(path)


def test_cli_all_found(scene_file, capsys):
    assert main([scene_file]) == 0
    out = capsys.readouterr().out
    assert f"{scene_file} " in out
    assert "%" in out
    assert "Found 1/1 images with a valid marker." in out


def test_cli_reports_misses(tmp_path, scene_file, broken_file, capsys):
    report = tmp_path / "report.csv"
    code = main([scene_file, broken_file, "--report", str(report)])
    assert code == 2
    out = capsys.readouterr().out
    assert "Found 1/2 images with a valid marker." in out
    assert report.is_file()


def test_cli_no_marker(tmp_path, capsys):
    path = tmp_path / "plain.png"
    cv2.imwrite(str(path), np.full((100, 100, 3), 200, dtype=np.uint8))
    assert main([str(path)]) == 2
    assert f"{path} no marker found" in capsys.readouterr().out


def test_cli_missing_input(tmp_path, capsys):
    assert main([str(tmp_path / "missing.png")]) == 1
    assert "No images to process" in capsys.readouterr().err


def test_cli_params_file(tmp_path, scene_file, capsys):
    params = tmp_path / "params.json"
    params.write_text('{"min_occupancy": 1.01}')
    assert main([scene_file, "--params", str(params), "--save-debug", "--out", str(tmp_path / "dbg")]) == 0
    assert (tmp_path / "dbg" / "marker_debug_quad.png").is_file()


def test_process_image_keeps_artifacts_without_writing(tmp_path, scene_file):
    row, out = process_image(scene_file, Params(), keep_artifacts=True)
    assert out is not None and "quad" in out.artifacts
    assert row.quad_path == ""
    assert not list(tmp_path.glob("*_debug_*.png"))


def test_cli_show_goes_through_process_image(monkeypatch, scene_file):
    calls, shown = [], []
    real = cli.process_image

    def spy(*args, **kwargs):
        calls.append(kwargs)
        return real(*args, **kwargs)

    monkeypatch.setattr(cli, "process_image", spy)
    monkeypatch.setattr(cli, "show_artifacts", lambda artifacts, title: shown.append((set(artifacts), title)))
    assert cli.main([scene_file, "--show"]) == 0
    assert calls == [{"save_debug": False, "out_dir": None, "keep_artifacts": True}]
    assert shown == [({"mask", "quad", "warp", "crop", "clip"}, "marker.png")]
