# commands.py

import os

import click
from flask import current_app
from flask.cli import with_appcontext

from services.import_constants import SHEET_ORDER, SHEET_NAMES
from services.import_types import ErrorMode, UploadedFile, WizardStep


def _echo_stats(stats):
    for entity in SHEET_ORDER:
        click.echo(f"  {SHEET_NAMES[entity]:<10} {getattr(stats, entity.value)}")
    click.echo(f"  {'Total':<10} {stats.total}")


def _echo_errors(errors, limit=50):
    for error in errors[:limit]:
        location = f"{error.sheet} row {error.row}" if error.row else (error.sheet or 'import')
        click.echo(f"  [{location}] {error.message}", err=True)
    if len(errors) > limit:
        click.echo(f"  ... and {len(errors) - limit} more", err=True)


@click.command('import-file')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--error-mode', type=click.Choice([mode.value for mode in ErrorMode]), default=None,
              help='all_or_nothing rolls back on any row failure; best_effort keeps successful rows')
@click.option('--yes', is_flag=True, help='Import without asking for confirmation')
@with_appcontext
def import_file(path, error_mode, yes):
    """Import a workbook or CSV file"""
    wizard = current_app.services.get('import_wizard')
    if error_mode:
        wizard.error_mode = ErrorMode(error_mode)

    with open(path, 'rb') as handle:
        wizard.set_file(UploadedFile(filename=os.path.basename(path), content=handle.read()))
    if wizard.state.error:
        raise click.ClickException(wizard.state.error)

    wizard.parse_file()
    if wizard.state.step != WizardStep.PREVIEW:
        raise click.ClickException(wizard.state.error or 'Unable to parse the file')

    click.echo(f"Parsed {path}:")
    _echo_stats(wizard.stats)

    wizard.validate_data()
    if wizard.errors:
        _echo_errors(wizard.errors)
        raise click.ClickException(wizard.state.error)

    wizard.proceed_to_confirm()
    if not yes:
        click.confirm(f"Import {wizard.stats.total} rows ({wizard.error_mode.value})?", abort=True)

    def show_progress(state):
        progress = state.import_progress
        if state.step == WizardStep.PROGRESS and progress is not None and progress.phase is not None:
            suffix = ' (done)' if progress.is_complete else ''
            click.echo(f"  {progress.total_progress:>3}% {progress.phase_name}{suffix}")

    unsubscribe = wizard.subscribe(show_progress)
    try:
        wizard.execute_import()
    finally:
        unsubscribe()

    result = wizard.state.import_result
    click.echo("Result:")
    for entity, counts in result.summary.items():
        click.echo(f"  {entity:<10} created={counts['created']} updated={counts['updated']} "
                   f"failed={counts['failed']}")
    if result.errors:
        _echo_errors(result.errors)
    if result.rolled_back:
        click.echo("Import rolled back, nothing was saved.", err=True)
    click.echo(f"Done in {result.duration_ms} ms (job {result.job_id})")
    if not result.success:
        raise SystemExit(1)


@click.command('import-template')
@click.argument('output', type=click.Path(dir_okay=False, writable=True))
@click.option('--type', 'template_type', default='full',
              type=click.Choice(['full'] + [entity.value for entity in SHEET_ORDER]),
              help='Full workbook or a single sheet')
@with_appcontext
def import_template(output, template_type):
    """Write the import template workbook"""
    result = current_app.services.get('import_template').build_template(template_type)
    if result.is_failure:
        raise click.ClickException(result.error)
    with open(output, 'wb') as handle:
        handle.write(result.data)
    click.echo(f"Template written to {output}")


@click.command('import-history')
@click.option('--limit', default=20, show_default=True, type=click.IntRange(1, 500))
@with_appcontext
def import_history(limit):
    """List recent imports"""
    jobs = current_app.services.get('import_job_repository').get_recent(limit=limit)
    if not jobs:
        click.echo('No imports yet.')
        return
    for job in jobs:
        started = job.started_at.strftime('%Y-%m-%d %H:%M') if job.started_at else '-'
        click.echo(f"#{job.id:<5} {started}  {job.status:<12} {job.success_count:>5} ok "
                   f"{job.error_count:>5} errors  {job.filename or ''}")


def init_app(app):
    """Register commands with the Flask app"""
    app.cli.add_command(import_file)
    app.cli.add_command(import_template)
    app.cli.add_command(import_history)
