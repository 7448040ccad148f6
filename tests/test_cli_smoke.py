"""
Smoke tests for the command-line interface.
"""

import json

import pytest

from cashflowlab.cli import EXAMPLE_SCENARIO, build_parser, main


@pytest.fixture
def example_file(tmp_path):
    path = tmp_path / "scenario.json"
    path.write_text(json.dumps(EXAMPLE_SCENARIO), encoding="utf-8")
    return path


class TestCLI:
    """Exit codes and outputs of the subcommands."""

    def test_example_prints_valid_json(self, capsys):
        assert main(["example"]) == 0
        cfg = json.loads(capsys.readouterr().out)
        assert cfg["id"] == EXAMPLE_SCENARIO["id"]

    def test_validate_example(self, example_file, capsys):
        assert main(["validate", "-i", str(example_file)]) == 0
        assert "Validation passed" in capsys.readouterr().out

    def test_validate_json_format(self, example_file, capsys):
        assert main(["validate", "-i", str(example_file), "--format", "json"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["is_valid"] is True
        assert report["exit_code"] == 0

    def test_validate_invalid_scenario(self, tmp_path, capsys):
        cfg = json.loads(json.dumps(EXAMPLE_SCENARIO))
        cfg["lifecycle_phases"][0]["tax_profile_id"] = "missing"
        path = tmp_path / "broken.json"
        path.write_text(json.dumps(cfg), encoding="utf-8")

        assert main(["validate", "-i", str(path)]) == 1
        assert "Validation failed" in capsys.readouterr().out
        assert main(["validate", "-i", str(path), "--warn"]) == 0

    def test_run_writes_results(self, example_file, tmp_path):
        out = tmp_path / "results.json"
        code = main(
            [
                "run",
                "-i",
                str(example_file),
                "--trials",
                "2",
                "--months",
                "12",
                "--seed",
                "5",
                "-o",
                str(out),
            ]
        )
        assert code == 0
        results = json.loads(out.read_text(encoding="utf-8"))
        assert results["seed"] == 5
        assert results["months"] == 12
        assert len(results["trials"]) == 2
        assert 0.0 <= results["success_rate"] <= 1.0

    def test_run_with_trace(self, example_file, capsys):
        code = main(["run", "-i", str(example_file), "--trials", "1", "--months", "3", "--trace"])
        assert code == 0
        out = capsys.readouterr().out
        payload = json.loads(out[out.index("{"):])
        assert len(payload["traces"]["0"]) == 3

    def test_run_invalid_scenario_exits_1(self, tmp_path):
        cfg = json.loads(json.dumps(EXAMPLE_SCENARIO))
        cfg["correlations"] = [
            {"factor_a": "Aktien_Welt", "factor_b": "Inflation", "correlation": 1.0}
        ]
        path = tmp_path / "singular.json"
        path.write_text(json.dumps(cfg), encoding="utf-8")
        assert main(["run", "-i", str(path)]) == 1

    def test_missing_input_file(self, tmp_path):
        assert main(["run", "-i", str(tmp_path / "nope.json")]) == 1

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
