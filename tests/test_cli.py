"""
Tests for the snapshot evaluation script.
"""

from __future__ import annotations

import json

from scripts.evaluate_snapshot import main


def test_evaluates_file(tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"vix": 40, "qqq_daily_return": -6.5}))

    assert main([str(path), "--indent", "0"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["totalBonus"] == 45
    assert data["yieldCurvePolicy"] == "dual"


def test_policy_flag(tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"yield_curve": -0.6}))

    assert main([str(path), "--policy", "single"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["yieldCurvePolicy"] == "single"


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "missing.json")]) == 1
    assert "could not read snapshot" in capsys.readouterr().err


def test_non_object(tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text("[1, 2]")
    assert main([str(path)]) == 1
    assert "JSON object" in capsys.readouterr().err


def test_as_of_makes_output_reproducible(tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"vix": 27.5, "spx_pe": 24}))

    assert main([str(path), "--as-of", "2025-03-10T21:00:00+00:00"]) == 0
    first = capsys.readouterr().out
    assert main([str(path), "--as-of", "2025-03-10T21:00:00+00:00"]) == 0
    second = capsys.readouterr().out

    assert first == second
    assert json.loads(first)["timestamp"] == "2025-03-10T21:00:00+00:00"


def test_naive_as_of_is_utc(tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text("{}")
    assert main([str(path), "--as-of", "2025-03-10T21:00:00"]) == 0
    assert json.loads(capsys.readouterr().out)["timestamp"] == "2025-03-10T21:00:00+00:00"


def test_oversized_integer_in_file(tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text('{"vix": 1' + '0' * 400 + '}')
    assert main([str(path)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert "vix" in data["defaultedIndicators"]
