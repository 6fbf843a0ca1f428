import json

import click
from flask.cli import AppGroup

from .routes import get_store
from ...core.logging_service import LoggingService

newsletter_cli = AppGroup('newsletter', help='Manage newsletter subscribers.')


@newsletter_cli.command('stats')
def stats_command():
    """Print subscriber statistics as JSON"""
    click.echo(json.dumps(get_store().get_stats(), indent=2))


@newsletter_cli.command('export')
@click.option('--output', '-o', type=click.Path(dir_okay=False, writable=True),
              help='Write the export to this file instead of stdout.')
def export_command(output):
    """Export every subscriber record"""
    records = get_store().export_data()
    payload = json.dumps(records, indent=2, ensure_ascii=False)

    if output:
        with open(output, 'w', encoding='utf-8') as f:
            f.write(payload)
        click.echo(f"Exported {len(records)} subscribers to {output}")
    else:
        click.echo(payload)

    LoggingService.info('cli', 'Subscriber export', {'total_records': len(records), 'output': output})


@newsletter_cli.command('delete')
@click.argument('email')
def delete_command(email):
    """Permanently delete the subscriber with EMAIL"""
    if not get_store().delete_subscription(email):
        raise click.ClickException(f"No subscription found for {email}")

    LoggingService.info('cli', f'Erased subscriber: {email}')
    click.echo(f"Deleted subscription for {email}")


@newsletter_cli.command('prune-logs')
@click.option('--days', default=30, show_default=True, help='Keep entries newer than this.')
def prune_logs_command(days):
    """Delete persistent log entries older than --days"""
    deleted = LoggingService.cleanup_old_logs(days_to_keep=days)
    click.echo(f"Removed {deleted} log entries")
