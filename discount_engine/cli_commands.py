"""
Flask CLI commands for discount engine management.

Commands:
- flask init-db: Create the discount tables
- flask discount-stats ID: Print usage statistics of a rule
"""

import click
from discount_engine.database import create_all, get_session
from discount_engine.services.discount_stats_service import get_discount_stats


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the discount_rule and discount_usage tables."""
        create_all()
        click.echo(click.style('Tables created.', fg='green'))

    @app.cli.command('discount-stats')
    @click.argument('discount_id', type=int)
    def discount_stats_command(discount_id):
        """Print usage statistics for a discount rule."""
        stats = get_discount_stats(get_session(), discount_id)
        if stats is None:
            click.echo(click.style(f'Discount {discount_id} not found.', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(f"{stats['discount_name']} (#{stats['discount_id']})", bold=True))
        click.echo(f"   Uses: {stats['total_uses']}")
        click.echo(f"   Savings: {stats['total_savings']}")
        click.echo(f"   Average per use: {stats['average_order_value']}")

        if stats['top_customers']:
            click.echo('   Top customers:')
            for row in stats['top_customers']:
                click.echo(f"     {row['customer_id']}: {row['uses']} uses, {row['total_savings']} saved")

        if stats['usage_by_date']:
            click.echo('   By date:')
            for row in stats['usage_by_date']:
                click.echo(f"     {row['date']}: {row['uses']} uses, {row['savings']} saved")
