"""CLI tools for sync, classification and alert operations."""

import json
import logging
from uuid import UUID

import click

from leadflow.core.async_utils import run_async
from leadflow.core.config import settings
from leadflow.db.models import EmailMessage
from leadflow.db.session import SessionLocal


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise click.BadParameter(f"{label} must be a UUID")


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: str | None):
    """Leadflow CLI tools."""
    logging.basicConfig(
        level=getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@cli.command()
@click.argument("org_id")
@click.option("--force", is_flag=True, help="Full sync, ignoring cursors and cooldowns")
def sync_org(org_id: str, force: bool):
    """
    Run one manual sync cycle for a tenant.

    Example:
        python -m leadflow.cli sync-org 7d0e... --force
    """
    from leadflow.services import sync_orchestrator

    cycle = run_async(sync_orchestrator.run_manual_sync(_parse_uuid(org_id, "ORG_ID"), force=force))
    if cycle.busy:
        click.echo("❌ Sync already in progress for this organization")
        return
    if cycle.timed_out:
        click.echo("❌ Sync timed out")
    result = sync_orchestrator.manual_result(cycle)
    summary = result["summary"]
    click.echo(
        f"✓ Sync finished: {summary['totalNewMessages']} messages, "
        f"{summary['totalNewThreads']} threads, {summary['totalNewEvents']} events"
    )
    for entry in result["email"]["accounts"] + result["calendar"]["accounts"]:
        mark = "✓" if entry["success"] else "❌"
        suffix = f" ({entry['error']})" if entry.get("error") else ""
        click.echo(f"  {mark} {entry['provider']} {entry['email']}{suffix}")


@cli.command()
@click.argument("email_id")
def classify(email_id: str):
    """Classify one stored email (no-op if already classified)."""
    from leadflow.services import classification_service
    from leadflow.services.ai_provider import get_configured_provider

    message_id = _parse_uuid(email_id, "EMAIL_ID")
    with SessionLocal() as db:
        message = db.query(EmailMessage).filter(EmailMessage.id == message_id).first()
        if not message:
            click.echo(f"❌ Email not found: {email_id}")
            return
        try:
            record = run_async(
                classification_service.classify_email(
                    db,
                    org_id=message.org_id,
                    email_id=message.id,
                    provider=get_configured_provider(),
                )
            )
        except classification_service.ClassificationError as e:
            click.echo(f"❌ {e.code}: {e}")
            return
        click.echo(
            json.dumps(
                {
                    "category": record.category,
                    "priorityScore": record.priority_score,
                    "leadScore": record.lead_score,
                    "confidenceScore": record.confidence_score,
                    "modelUsed": record.model_used,
                },
                indent=2,
            )
        )


@cli.command()
@click.argument("org_id")
def evaluate_alerts(org_id: str):
    """Run the batch alert sweep for a tenant."""
    from leadflow.services import alert_service

    with SessionLocal() as db:
        result = alert_service.process_batch_alerts(db, org_id=_parse_uuid(org_id, "ORG_ID"))
    click.echo(f"✓ Processed {result.processed} records, {len(result.alerts)} alerts triggered")
    for alert in result.alerts:
        click.echo(f"  → {alert.type.value} for {alert.lead_intelligence_id} (score {alert.score})")


@cli.command()
def scheduler():
    """Run the sync scheduler in the foreground (same as python -m leadflow.worker)."""
    from leadflow import worker

    worker.main()


if __name__ == "__main__":
    cli()
