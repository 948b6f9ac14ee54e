"""Flask CLI commands for admin operations."""
from datetime import timedelta

import click


def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        from studio.extensions import db

        db.create_all()
        click.echo("Database initialized.")

    @app.cli.command("grant-credits")
    @click.argument("account_id")
    @click.argument("amount", type=int)
    def grant_credits(account_id, amount):
        """Top up an account's generation credits."""
        from studio.errors import ValidationError
        from studio.services.usage_service import grant_credits as grant

        try:
            remaining = grant(account_id, amount)
        except ValidationError as e:
            raise click.BadParameter(e.message, param_hint="amount")
        click.echo(f"{account_id}: {remaining} credits")

    @app.cli.command("stats")
    def stats():
        """Show generation and usage statistics."""
        from sqlalchemy import func
        from studio.extensions import db
        from studio.models.usage import UsageLedger
        from studio.services.history_service import stats as history_stats

        s = history_stats()
        click.echo(f"Total generations: {sum(s.values())}")
        for status, count in sorted(s.items()):
            click.echo(f"  {status}: {count}")

        accounts, generated, shares = db.session.query(
            func.count(UsageLedger.account_id),
            func.coalesce(func.sum(UsageLedger.total_generated), 0),
            func.coalesce(func.sum(UsageLedger.total_shares), 0),
        ).one()
        click.echo(f"Accounts: {accounts}")
        click.echo(f"Credits used: {generated}")
        click.echo(f"Shares rewarded: {shares}")

    @app.cli.command("prune-history")
    @click.option("--hours", default=24, type=int, help="Age of failed/cancelled records to drop")
    def prune_history(hours):
        """Drop stale failed records and re-apply the history cap."""
        from studio.services.history_service import prune

        removed = prune(max_age=timedelta(hours=hours))
        click.echo(f"Removed {removed} history records.")
