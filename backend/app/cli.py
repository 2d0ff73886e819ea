"""
app/cli.py — Flask CLI commands for the orphan janitor and fan-out rebuild.

  flask --app backend.app:create_app janitor run-once
  flask --app backend.app:create_app janitor loop [--interval SECONDS]
  flask --app backend.app:create_app fanout rebuild

The loop runs one tick immediately and then one per interval. A failed
tick is logged and the loop keeps going.
"""

from __future__ import annotations

import time

import click
from flask import current_app
from flask.cli import AppGroup

janitor_cli = AppGroup("janitor", help="Orphan cleanup janitor.")


def _run_tick() -> dict:
    from backend.app.extensions import db
    from backend.app.services import janitor_service

    return janitor_service.cleanup_orphans(
        db.session,
        page_size=current_app.config["JANITOR_PAGE_SIZE"],
        max_orphans_per_run=current_app.config["JANITOR_MAX_ORPHANS_PER_RUN"],
    )


@janitor_cli.command("run-once")
def run_once() -> None:
    """Run a single janitor tick and print its counts."""
    result = _run_tick()
    click.echo(
        f"orphans_found={result['orphans_found']} "
        f"orphans_cleaned={result['orphans_cleaned']} "
        f"remaining_orphans={result['remaining_orphans']} "
        f"failures={result['failures']}"
    )


@janitor_cli.command("loop")
@click.option("--interval", type=int, default=None, help="Seconds between ticks.")
def loop(interval: int | None) -> None:
    """Run janitor ticks forever."""
    from backend.app.extensions import db

    interval = interval or current_app.config["JANITOR_INTERVAL_SECONDS"]
    current_app.logger.info("janitor_loop_started interval_seconds=%d", interval)
    while True:
        try:
            _run_tick()
        except Exception:
            db.session.rollback()
            current_app.logger.exception("janitor_tick_failed")
        time.sleep(interval)


fanout_cli = AppGroup("fanout", help="Fan-out (user_expenses) maintenance.")


@fanout_cli.command("rebuild")
def rebuild() -> None:
    """Replay every expense into user_expenses and drop orphaned rows."""
    from backend.app.extensions import db
    from backend.app.services import fanout_service

    result = fanout_service.rebuild_all_user_expenses(db.session)
    db.session.commit()
    click.echo(" ".join(f"{key}={value}" for key, value in result.items()))
