from __future__ import annotations

import json

from dropweights.cli import main


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_mle_run_writes_json(tmp_path, single_input_datasets):
    data = _write(tmp_path / "data.json", single_input_datasets)
    out = tmp_path / "out"
    rc = main(["mle", str(data), "--output-dir", str(out), "--iterations", "3000"])
    assert rc == 0
    weights = json.loads((out / "mle.json").read_text(encoding="utf-8"))
    assert abs(weights["x"] - 0.8) < 0.05


def test_bayesian_per_input_run(tmp_path, mixed_datasets):
    data = _write(tmp_path / "data.json", mixed_datasets)
    out = tmp_path / "out"
    rc = main(
        [
            "bayesian",
            str(data),
            "--per-input",
            "--output-dir",
            str(out),
            "--num-samples",
            "100",
            "--burn-in",
            "50",
            "--num-chains",
            "1",
            "--seed",
            "5",
        ]
    )
    assert rc == 0
    payload = json.loads((out / "bayesian.json").read_text(encoding="utf-8"))
    assert list(payload) == ["a", "b", "unknown"]


def test_cached_run_populates_cache_directory(tmp_path, single_input_datasets):
    data = _write(tmp_path / "data.json", single_input_datasets)
    cache_dir = tmp_path / "cache"
    args = ["mle", str(data), "--output-dir", str(tmp_path / "out"), "--cache-dir", str(cache_dir), "--iterations", "200"]
    assert main(args) == 0
    assert main(args) == 0
    assert len(list(cache_dir.glob("*.json"))) == 1


def test_invalid_dataset_exits_with_code_two(tmp_path, capsys):
    data = _write(tmp_path / "data.json", [{"items": [{"id": "x", "count": -1}]}])
    rc = main(["mle", str(data), "--output-dir", str(tmp_path / "out")])
    assert rc == 2
    assert "position 0" in capsys.readouterr().err


def test_oversized_count_exits_with_code_two(tmp_path, capsys):
    data = _write(tmp_path / "data.json", [{"items": [{"id": "x", "count": 10**400}, {"id": "y", "count": 1}]}])
    rc = main(["mle", str(data), "--output-dir", str(tmp_path / "out")])
    assert rc == 2
    assert "too large" in capsys.readouterr().err
