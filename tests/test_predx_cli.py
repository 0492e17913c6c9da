"""
Tests for predx/forecasting/cli.py - Command-line interface.
"""

import csv
import json
import pytest
import tempfile
from pathlib import Path

from predx.forecasting import cli, interchange


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def planets_csv(temp_dir):
    path = temp_dir / "planets.csv"
    path.write_text(
        "target,location,predx_class,prob\n"
        "habitability,Mercury,Binary,0.01\n"
        "habitability,Venus,Binary,0.02\n"
        "habitability,Mars,Binary,0.1\n"
    )
    return path


@pytest.fixture
def expected_yaml(temp_dir):
    path = temp_dir / "expected.yaml"
    path.write_text(
        "- target: habitability\n"
        "  location: [Mercury, Venus, Earth]\n"
        "  predx_class: Binary\n"
    )
    return path


class TestGuessFormat:
    """Tests for input format detection."""

    def test_json(self):
        assert cli.guess_format("out/table.JSON") == "json"

    def test_flusight(self):
        assert cli.guess_format("EW42-Team-2018-10-29.csv") == "flusight"

    def test_csv(self):
        assert cli.guess_format("planets.csv") == "csv"


class TestValidateCommand:
    """Tests for the validate command."""

    def test_all_valid(self, planets_csv, capsys):
        exit_code = cli.main(["validate", str(planets_csv)])

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "Records: 3 (3 valid, 0 failed)" in out
        assert "Binary: 3" in out

    def test_failures_listed(self, temp_dir, capsys):
        path = temp_dir / "bad.csv"
        path.write_text("location,predx_class,prob\nMercury,Binary,1.5\n")

        exit_code = cli.main(["validate", str(path)])

        assert exit_code == 1
        out = capsys.readouterr().out
        assert "Failed records:" in out
        assert "location=Mercury [Binary]: probability 1.5" in out

    def test_missing_file(self, temp_dir, capsys):
        exit_code = cli.main(["validate", str(temp_dir / "missing.csv")])

        assert exit_code == 1
        assert "Error:" in capsys.readouterr().err


class TestVerifyCommand:
    """Tests for the verify command."""

    def test_report(self, planets_csv, expected_yaml, capsys):
        exit_code = cli.main(["verify", str(planets_csv), "--expected", str(expected_yaml)])

        assert exit_code == 1
        out = capsys.readouterr().out
        assert "location=Earth, predx_class=Binary, target=habitability" in out
        assert "Found 1 unexpected prediction(s):" in out

    def test_records_as_json(self, planets_csv, expected_yaml, capsys):
        cli.main(["verify", str(planets_csv), "--expected", str(expected_yaml), "--records"])

        records = json.loads(capsys.readouterr().out)
        assert [r["status"] for r in records] == ["missing", "unexpected"]

    def test_records_to_csv(self, planets_csv, expected_yaml, temp_dir):
        out = temp_dir / "discrepancies.csv"
        cli.main(["verify", str(planets_csv), "--expected", str(expected_yaml), "--records", "-o", str(out)])

        with open(out, newline="") as f:
            rows = list(csv.DictReader(f))
        assert [r["location"] for r in rows] == ["Earth", "Mars"]

    def test_all_present(self, planets_csv, temp_dir, capsys):
        expected_path = temp_dir / "expected.json"
        expected_path.write_text(json.dumps([{"location": ["Mercury", "Venus", "Mars"]}]))

        assert cli.main(["verify", str(planets_csv), "--expected", str(expected_path)]) == 0
        assert "All expected predictions present" in capsys.readouterr().out

    def test_preset(self, planets_csv, capsys):
        exit_code = cli.main(["verify", str(planets_csv), "--preset", "flusight-hospitalization"])
        assert exit_code == 1

    def test_bad_expected(self, planets_csv, temp_dir, capsys):
        expected_path = temp_dir / "expected.json"
        expected_path.write_text(json.dumps({"location": "Mercury"}))

        assert cli.main(["verify", str(planets_csv), "--expected", str(expected_path)]) == 1
        assert "Invalid expected specification" in capsys.readouterr().err

    def test_expected_or_preset_required(self, planets_csv):
        with pytest.raises(SystemExit):
            cli.main(["verify", str(planets_csv)])


class TestConvertCommand:
    """Tests for the convert command."""

    def test_to_json(self, planets_csv, temp_dir):
        out = temp_dir / "planets.json"

        assert cli.main(["convert", str(planets_csv), "--to", "json", "-o", str(out)]) == 0
        table = interchange.import_json(out)
        assert [r.get("location") for r in table] == ["Mercury", "Venus", "Mars"]

    def test_existing_output(self, planets_csv, temp_dir, capsys):
        out = temp_dir / "planets.json"
        out.write_text("[]")

        assert cli.main(["convert", str(planets_csv), "--to", "json", "-o", str(out)]) == 1
        assert "already exists" in capsys.readouterr().err

    def test_overwrite(self, planets_csv, temp_dir):
        out = temp_dir / "planets.json"
        out.write_text("[]")

        assert cli.main(["convert", str(planets_csv), "--to", "json", "-o", str(out), "--overwrite"]) == 0
        assert len(json.loads(out.read_text())) == 3

    def test_skipped_records_reported(self, temp_dir, capsys):
        src = temp_dir / "mixed.csv"
        src.write_text("location,predx_class,prob\nMercury,Binary,0.5\nVenus,Binary,NA\n")

        assert cli.main(["convert", str(src), "--to", "csv", "-o", str(temp_dir / "out.csv")]) == 0
        captured = capsys.readouterr()
        assert "Wrote 1 record(s)" in captured.out
        assert "Skipped 1 record(s)" in captured.err


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 0
    assert "usage: predx" in capsys.readouterr().out
