"""
Command line interface for guestsync.

Every command reads settings from ``config.base`` (``GUESTSYNC_ENV`` picks the
class). Source rows and CRM snapshots are JSON files; the production
extractor and CRM transport plug into ``SyncRunner`` the same way.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Optional

import click

from config.base import get_config
from config.classification import ClassificationConfigError, load_rules
from config.monitoring import get_monitoring_config
from config.validation import validate_environment
from guestsync import metrics
from guestsync.adapters import InMemoryCRM, JsonRowsExtractor, SnapshotApplyTarget
from guestsync.exceptions import ConfigurationError, GuestSyncError
from guestsync.logging_config import setup_logging
from guestsync.models import create_session_factory
from guestsync.pipeline import (
    DuplicateIndex,
    EnginePolicy,
    JsonFileCheckpointStore,
    ReconciliationResult,
    SqlCheckpointStore,
    reconcile,
)
from guestsync.pipeline.run_service import SyncRunner


class _CliState:
    def __init__(self, config_class, monitoring):
        self.config = config_class
        self.monitoring = monitoring
        self._session = None

    @property
    def session(self):
        if self._session is None:
            self._session = create_session_factory(self.config.DATABASE_URL)()
        return self._session

    def checkpoint_store(self):
        if self.config.DATABASE_URL:
            return SqlCheckpointStore(self.session, self.config.CHECKPOINT_NAME)
        return JsonFileCheckpointStore(self.config.CHECKPOINT_PATH)

    def rules(self):
        try:
            return load_rules(self.config.CLASSIFICATION_PATH)
        except ClassificationConfigError as exc:
            raise click.ClickException(str(exc)) from exc


def _load_crm(crm_path: Path) -> InMemoryCRM:
    try:
        return InMemoryCRM.load_json(crm_path)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


def _format_summary(result: ReconciliationResult) -> str:
    lines = ["Reconciliation summary:"]
    for name, value in result.summary.to_dict().items():
        lines.append(f"  {name.replace('_', ' ')}: {value}")
    plan = result.plan.to_dict()
    lines.append(
        "Plan: {create_identities} identities to create, {create_stays} stays to create, "
        "{update_stays} stays to update".format(**plan)
    )
    if result.review_required:
        lines.append(f"Review required: {len(result.review_queue)} records held back")
        for reason, count in result.review_queue.counts_by_reason().items():
            lines.append(f"  {reason}: {count}")
    for item in result.front_desk:
        lines.append(
            f"Front desk: {item.first_name} {item.last_name} ({item.email or 'no email'}) "
            f"arriving {item.check_in.isoformat()} [{item.reason}]"
        )
    for candidate in result.possible_duplicates:
        lines.append(
            f"Possible duplicate: {candidate.record.email} ~ {candidate.existing.email} ({candidate.score}%)"
        )
    for warning in result.warnings:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines)


def _summary_payload(result: ReconciliationResult) -> dict:
    return {
        "summary": result.summary.to_dict(),
        "plan": result.plan.to_dict(),
        "review": result.review_queue.counts_by_reason(),
        "outcomes": result.outcome_counts(),
        "warnings": list(result.warnings),
    }


def _preview(state: _CliState, source: Path, crm_path: Path, as_of: Optional[date]) -> ReconciliationResult:
    crm = _load_crm(crm_path)
    config_class = state.config
    duplicate_index = None
    if config_class.DUPLICATE_DETECTION:
        duplicate_index = DuplicateIndex.from_stays(crm.all_stays(), threshold=config_class.DUPLICATE_THRESHOLD)
    rows = JsonRowsExtractor(source).extract(None)
    return reconcile(
        rows,
        crm,
        rules=state.rules(),
        policy=EnginePolicy.from_config(config_class),
        duplicate_index=duplicate_index,
        as_of=as_of,
    )


_source_option = click.option(
    "--source",
    "source",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="JSON array of raw PMS guest rows.",
)
_crm_option = click.option(
    "--crm",
    "crm_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="JSON snapshot of CRM identities and stays.",
)
_as_of_option = click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Run date for the front-desk list (defaults to no list).",
)


@click.group(name="guestsync")
@click.option("--env", "env_name", default=None, help="Config environment (development, testing, production).")
@click.pass_context
def cli(ctx, env_name: Optional[str]):
    """Reconcile PMS guest records against the CRM."""

    is_valid, errors = validate_environment()
    if not is_valid:
        raise click.ClickException("Invalid environment:\n  " + "\n  ".join(errors))
    monitoring = get_monitoring_config(env_name)
    setup_logging(monitoring)
    ctx.obj = _CliState(get_config(env_name), monitoring)


@cli.command("preview")
@_source_option
@_crm_option
@_as_of_option
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload.")
@click.pass_obj
def preview_command(state: _CliState, source: Path, crm_path: Path, as_of, summary_json: bool):
    """Show what a run would do, without applying anything."""

    result = _preview(state, source, crm_path, as_of.date() if as_of else None)
    click.echo(_format_summary(result))
    if summary_json:
        click.echo(json.dumps(_summary_payload(result), indent=2, sort_keys=True))


@cli.command("export-review")
@_source_option
@_crm_option
@click.option(
    "--output",
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="CSV file to write the review queue to.",
)
@click.pass_obj
def export_review_command(state: _CliState, source: Path, crm_path: Path, output: Path):
    """Write the records held for manual review to a CSV file."""

    result = _preview(state, source, crm_path, None)
    with output.open("w", encoding="utf-8", newline="") as handle:
        count = result.review_queue.write_csv(handle)
    click.echo(f"Wrote {count} review rows to {output}")


@cli.command("run")
@_source_option
@_crm_option
@click.option("--dry-run", is_flag=True, help="Reconcile without applying or advancing the checkpoint.")
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload.")
@click.pass_obj
def run_command(state: _CliState, source: Path, crm_path: Path, dry_run: bool, summary_json: bool):
    """
    Run a full sync against a CRM snapshot.

    The snapshot file is rewritten with the applied plan, before the checkpoint
    moves, unless --dry-run is set.
    """

    crm = _load_crm(crm_path)
    if state.monitoring.METRICS_ENABLED:
        metrics.start_metrics_server(state.monitoring.METRICS_PORT)
    runner = SyncRunner.from_config(
        state.config,
        extractor=JsonRowsExtractor(source),
        reader=crm,
        apply_target=SnapshotApplyTarget(crm, crm_path),
        checkpoint_store=state.checkpoint_store(),
        rules=state.rules(),
        session=state.session if state.config.DATABASE_URL else None,
        duplicate_source=crm.all_stays,
    )
    try:
        outcome = runner.run(dry_run=dry_run)
    except GuestSyncError as exc:
        raise click.ClickException(f"Run aborted: {exc}") from exc

    if outcome.result is not None:
        click.echo(_format_summary(outcome.result))
    if not outcome.succeeded:
        raise click.ClickException(f"Run failed during {outcome.error_stage}: {outcome.error}")
    if summary_json and outcome.result is not None:
        payload = _summary_payload(outcome.result)
        payload["run_id"] = outcome.run_id
        payload["checkpoint_advanced"] = outcome.checkpoint_advanced
        click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@cli.group("checkpoint")
def checkpoint_group():
    """Inspect or reset the sync checkpoint."""


@checkpoint_group.command("show")
@click.pass_obj
def checkpoint_show(state: _CliState):
    try:
        checkpoint = state.checkpoint_store().load()
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    payload = {
        "lastSyncTimestamp": checkpoint.last_sync_timestamp.isoformat() if checkpoint.last_sync_timestamp else None,
        "lastSyncStatus": checkpoint.last_sync_status,
        "lastSyncRecordCount": checkpoint.last_sync_record_count,
    }
    click.echo(json.dumps(payload, indent=2))


@checkpoint_group.command("reset")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_obj
def checkpoint_reset(state: _CliState, yes: bool):
    """Forget the checkpoint so the next run extracts everything."""

    if not yes:
        click.confirm("Reset the sync checkpoint? The next run will re-extract all rows", abort=True)
    state.checkpoint_store().reset()
    click.echo("Checkpoint reset.")


@cli.command("rules")
@click.option("--json", "as_json", is_flag=True, help="Print the full rule set as JSON.")
@click.pass_obj
def rules_command(state: _CliState, as_json: bool):
    """Show the active agent/proxy classification rules."""

    rules = state.rules()
    if as_json:
        payload = {
            "version": rules.version,
            "proxy_markers": [{"marker": m.marker, "category": m.category} for m in rules.proxy_markers],
            "placeholder_first_names": list(rules.placeholder_first_names),
            "agent_keywords": list(rules.agent_keywords),
        }
        click.echo(json.dumps(payload, indent=2))
        return
    click.echo(f"Classification rules version {rules.version}")
    click.echo(f"  proxy markers: {len(rules.proxy_markers)}")
    click.echo(f"  placeholder first names: {len(rules.placeholder_first_names)}")
    click.echo(f"  agent keywords: {len(rules.agent_keywords)}")


def main():
    cli(prog_name="guestsync")


if __name__ == "__main__":
    main()
