"""Administrative command line for the engagement tracker.

Examples::

    engagement-tracker reconcile 59d00bc7-08e7-4af8-83b8-c4921d3c7d12
    engagement-tracker reconcile --all
    engagement-tracker reclassify --event-type click
    engagement-tracker verify
    engagement-tracker serve --port 8000
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import click
import uvicorn

from engagement_tracker import db
from engagement_tracker.analytics import metrics, reclassify, reconcile
from engagement_tracker.config import Settings
from engagement_tracker.errors import TrackerError

LOGGER = logging.getLogger(__name__)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Engagement tracker administration."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


@cli.command("reconcile")
@click.argument("campaign_ids", nargs=-1)
@click.option("--all", "all_campaigns", is_flag=True, help="Every campaign.")
@click.pass_obj
def reconcile_cmd(
    settings: Settings, campaign_ids: Tuple[str, ...], all_campaigns: bool
) -> None:
    """Recompute and overwrite all six counters of campaigns."""
    engine = db.get_engine()
    if all_campaigns:
        campaign_ids = tuple(db.load_campaigns(engine)["campaign_id"].astype(str))
    if not campaign_ids:
        raise click.UsageError("Give at least one CAMPAIGN_ID or --all")

    failed = 0
    for cid in campaign_ids:
        try:
            counters = reconcile.recompute_campaign(
                engine, cid, page_size=settings.page_size
            )
        except TrackerError as exc:
            failed += 1
            LOGGER.error("Reconcile of %s failed: %s", cid, exc)
            continue
        cols = counters.as_columns()
        click.echo(
            f"{cid}: " + ", ".join(f"{k}={v}" for k, v in cols.items())
        )
    if failed:
        raise click.ClickException(f"{failed} campaign(s) not reconciled")


@cli.command("reclassify")
@click.option("--campaign", "campaign_id", default=None, help="Limit to one campaign.")
@click.option(
    "--event-type",
    type=click.Choice(["open", "click"]),
    default=None,
    help="Limit to one event type.",
)
@click.pass_obj
def reclassify_cmd(
    settings: Settings, campaign_id: Optional[str], event_type: Optional[str]
) -> None:
    """Re-score stored events with the current rules."""
    report = reclassify.reclassify_events(
        db.get_engine(),
        campaign_id=campaign_id,
        event_type=event_type,
        page_size=settings.page_size,
    )
    click.echo(
        f"scanned={report.scanned} changed={report.changed} "
        f"to_bot={report.to_bot} to_human={report.to_human}"
    )
    for cid, counts in report.bot_counts.items():
        click.echo(
            f"{cid}: bot_open_count={counts.bot_open} "
            f"bot_click_count={counts.bot_click}"
        )
    if report.failed:
        raise click.ClickException(
            "Bot counters not rebuilt for: " + ", ".join(report.failed)
            + "; rerun reclassify or reconcile them"
        )


@cli.command("verify")
@click.pass_context
def verify_cmd(ctx: click.Context) -> None:
    """Report campaigns whose stored counters drifted; exit 1 if any."""
    engine = db.get_engine()
    derived = metrics.compute_campaign_metrics(
        db.load_recipients(engine), db.load_events(engine)
    )
    drift = metrics.counter_drift(db.load_campaigns(engine), derived)
    if drift.empty:
        click.echo("All campaign counters are in sync.")
        return
    click.echo(drift.to_string(index=False))
    ctx.exit(1)


@cli.command("serve")
@click.option("--host", default=None, help="Bind address.")
@click.option("--port", type=int, default=None, help="Bind port.")
@click.pass_obj
def serve_cmd(settings: Settings, host: Optional[str], port: Optional[int]) -> None:
    """Run the tracking server."""
    uvicorn.run(
        "engagement_tracker.tracking.server:app",
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    cli()


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
