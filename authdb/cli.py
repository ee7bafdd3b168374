"""Command-line interface for schema migrations."""

from pathlib import Path

import click
from sqlalchemy.exc import SQLAlchemyError

from .config import DatabaseConfig, migrations_dir as default_migrations_dir
from .database import Database
from .errors import AuthDbError, MigrationUsageError
from .migrator import MigrationStatus, Migrator, create_migration


def open_database() -> Database:
    return Database.from_config(DatabaseConfig.from_env())


def _report(result_set, done: str, failed: str) -> None:
    for result in result_set.results:
        if result.status is MigrationStatus.SUCCESS:
            click.echo(f'✅ Migration "{result.name}" was {done} successfully')
        elif result.status is MigrationStatus.ERROR:
            click.echo(click.style(f'❌ Failed to {failed} migration "{result.name}"', fg="red"), err=True)
        else:
            click.echo(f'⏭️  Migration "{result.name}" was not executed')


def _run(ctx: click.Context, action: str):
    """Open the database, run one Migrator action, always close the pool."""
    try:
        with open_database() as db:
            return getattr(Migrator(db, ctx.obj), action)()
    except (AuthDbError, SQLAlchemyError) as e:
        raise click.ClickException(str(e))


@click.group()
@click.option(
    "--migrations-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory with migration files (default: $MIGRATIONS_DIR or the bundled migrations).",
)
@click.pass_context
def cli(ctx: click.Context, migrations_dir: Path | None) -> None:
    """Schema migrations for the auth database.

    Connection settings come from DB_HOST, DB_PORT, DB_NAME, DB_USER and
    DB_PASSWORD (or DATABASE_URL), read from the environment or a .env file.
    """
    ctx.obj = migrations_dir or default_migrations_dir()


@cli.command()
@click.pass_context
def up(ctx: click.Context) -> None:
    """Run all pending migrations."""
    click.echo("🚀 Running migrations...\n")
    result_set = _run(ctx, "up")
    _report(result_set, "executed", "execute")

    if not result_set.ok:
        click.echo(click.style("❌ Failed to migrate", fg="red"), err=True)
        click.echo(str(result_set.error.cause), err=True)
        ctx.exit(1)

    if not result_set.results:
        click.echo("Nothing to migrate, database is up to date")
    click.echo(click.style("\n✅ All migrations completed successfully!", fg="green"))


@cli.command()
@click.pass_context
def down(ctx: click.Context) -> None:
    """Roll back the last applied migration."""
    click.echo("⏪ Rolling back last migration...\n")
    result_set = _run(ctx, "down")
    _report(result_set, "rolled back", "rollback")

    if not result_set.ok:
        click.echo(click.style("❌ Failed to rollback", fg="red"), err=True)
        click.echo(str(result_set.error.cause), err=True)
        ctx.exit(1)

    if not result_set.results:
        click.echo("No applied migrations to roll back")
    click.echo(click.style("\n✅ Rollback completed successfully!", fg="green"))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show every migration and whether it has been applied."""
    click.echo("📋 Checking migration status...\n")
    migrations = _run(ctx, "status")

    if not migrations:
        click.echo("No migrations found")
        return

    for info in migrations:
        if info.applied:
            state = click.style(f"✅ Executed at {info.executed_at.isoformat()}", fg="green")
        else:
            state = click.style("⏳ Pending", fg="yellow")
        click.echo(f"{state} - {info.name}")


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def create(ctx: click.Context, name: str | None) -> None:
    """Create a new empty migration file.

    Examples:

        migrate create add_person_locale
    """
    try:
        path = create_migration(ctx.obj, name)
    except MigrationUsageError as e:
        raise click.ClickException(f"{e}\nUsage: migrate create <migration-name>")
    click.echo(click.style(f"✅ Created migration: {path.name}", fg="green"))


def main() -> None:
    cli(prog_name="migrate")
