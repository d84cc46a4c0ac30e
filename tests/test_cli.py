from __future__ import annotations

import csv
import json

import pytest
from click.testing import CliRunner

from guestsync.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def crm_file(tmp_path):
    path = tmp_path / "crm.json"
    path.write_text(
        json.dumps(
            {
                "identities": [
                    {"identity_id": "ID-1", "email": "guest@example.com", "first_name": "John", "last_name": "Doe"}
                ],
                "stays": [],
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def source_file(tmp_path, make_row):
    path = tmp_path / "rows.json"
    rows = [
        make_row(email="guest@example.com", first="John", last="Doe"),
        make_row(email="guest@example.com", first="Mary", last="Doe", check_in="2026-03-02"),
        make_row(email="ann@example.com", first="Ann", last="Lee"),
    ]
    path.write_text(json.dumps(rows), encoding="utf-8")
    return path


def test_preview_prints_summary_and_review_counts(runner, source_file, crm_file):
    result = runner.invoke(cli, ["--env", "testing", "preview", "--source", str(source_file), "--crm", str(crm_file)])

    assert result.exit_code == 0, result.output
    assert "Plan: 1 identities to create, 1 stays to create, 0 stays to update" in result.output
    assert "Review required: 2 records held back" in result.output
    assert "shared-email-conflict: 2" in result.output


def test_preview_summary_json(runner, source_file, crm_file):
    result = runner.invoke(
        cli,
        ["--env", "testing", "preview", "--source", str(source_file), "--crm", str(crm_file), "--summary-json"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output[result.output.index("{") :])
    assert payload["plan"] == {"create_identities": 1, "create_stays": 1, "update_stays": 0}
    assert payload["review"] == {"shared-email-conflict": 2}


def test_preview_lists_front_desk_arrivals(runner, tmp_path, crm_file, make_row):
    source = tmp_path / "rows.json"
    source.write_text(json.dumps([make_row(email="bad@gmail.co", first="Lucia", check_in="2026-10-19")]), encoding="utf-8")

    result = runner.invoke(
        cli,
        ["--env", "testing", "preview", "--source", str(source), "--crm", str(crm_file), "--as-of", "2026-10-19"],
    )

    assert result.exit_code == 0, result.output
    assert "Front desk: Lucia Doe (bad@gmail.co) arriving 2026-10-19 [provider-typo]" in result.output


def test_export_review_writes_csv(runner, tmp_path, source_file, crm_file):
    output = tmp_path / "review.csv"

    result = runner.invoke(
        cli,
        ["--env", "testing", "export-review", "--source", str(source_file), "--crm", str(crm_file), "--output", str(output)],
    )

    assert result.exit_code == 0, result.output
    assert "Wrote 2 review rows" in result.output
    with output.open(encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["FirstName"] for row in rows] == ["John", "Mary"]


def test_run_applies_plan_to_snapshot(runner, source_file, crm_file):
    result = runner.invoke(cli, ["--env", "testing", "run", "--source", str(source_file), "--crm", str(crm_file)])

    assert result.exit_code == 0, result.output
    snapshot = json.loads(crm_file.read_text(encoding="utf-8"))
    assert {identity["email"] for identity in snapshot["identities"]} == {"guest@example.com", "ann@example.com"}
    assert [stay["email"] for stay in snapshot["stays"]] == ["ann@example.com"]


def test_run_dry_run_leaves_snapshot(runner, source_file, crm_file):
    before = crm_file.read_text(encoding="utf-8")

    result = runner.invoke(
        cli, ["--env", "testing", "run", "--source", str(source_file), "--crm", str(crm_file), "--dry-run"]
    )

    assert result.exit_code == 0, result.output
    assert crm_file.read_text(encoding="utf-8") == before


def test_run_reports_bad_source(runner, tmp_path, crm_file):
    source = tmp_path / "rows.json"
    source.write_text("{}", encoding="utf-8")

    result = runner.invoke(cli, ["--env", "testing", "run", "--source", str(source), "--crm", str(crm_file)])

    assert result.exit_code == 1
    assert "Run failed during extract" in result.output


def test_checkpoint_show_and_reset(runner):
    shown = runner.invoke(cli, ["--env", "testing", "checkpoint", "show"])
    reset = runner.invoke(cli, ["--env", "testing", "checkpoint", "reset", "--yes"])

    assert shown.exit_code == 0, shown.output
    assert json.loads(shown.output)["lastSyncTimestamp"] is None
    assert reset.exit_code == 0, reset.output
    assert "Checkpoint reset." in reset.output


def test_checkpoint_reset_asks_for_confirmation(runner):
    result = runner.invoke(cli, ["--env", "testing", "checkpoint", "reset"], input="n\n")

    assert result.exit_code == 1
    assert "Aborted" in result.output


def test_rules_json(runner):
    result = runner.invoke(cli, ["--env", "testing", "rules", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["version"] == "builtin-1"
    assert "reserv" in payload["agent_keywords"]
