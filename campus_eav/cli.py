"""CLI tools for EAV administration."""

import logging
import sys

import click

from campus_eav.core.config import settings
from campus_eav.core.migrations import SchemaUpgradeError, schema_status, upgrade_schema
from campus_eav.db.session import SessionLocal, engine
from campus_eav.services import eav_migration_service, eav_service
from campus_eav.services.eav_errors import EavServiceError
from campus_eav.services.eav_manifests import MANIFESTS, get_manifest


def _fail(message: str) -> None:
    click.echo(f"❌ Error: {message}", err=True)
    sys.exit(1)


@click.group()
def cli():
    """Campus EAV CLI tools."""
    pass


@cli.command()
@click.option(
    "--manifest",
    "manifest_key",
    type=click.Choice(sorted(MANIFESTS)),
    default="user-profile",
    show_default=True,
    help="Attribute manifest to apply",
)
@click.option("--dry-run", is_flag=True, help="Preview changes without committing to database")
@click.option("--verbose", is_flag=True, help="Show detailed progress information")
@click.option("--rollback", is_flag=True, help="Remove EAV setup (soft delete)")
def setup_eav(manifest_key: str, dry_run: bool, verbose: bool, rollback: bool):
    """
    Set up (or roll back) EAV attributes for an entity type.

    Safe to re-run: existing attribute definitions are skipped.

    Example:
        python -m campus_eav.cli setup-eav --manifest user-profile --dry-run
    """
    if verbose:
        logging.getLogger("campus_eav").setLevel(logging.DEBUG)

    manifest = get_manifest(manifest_key)
    click.echo(f"EAV {'rollback' if rollback else 'setup'}: {manifest.entity_type} "
               f"({manifest.key} v{manifest.version})")
    if dry_run:
        click.echo("→ Dry run: no changes will be committed")

    db = SessionLocal()
    try:
        if rollback:
            stats = eav_migration_service.run_rollback(db, manifest, dry_run=dry_run)
            click.echo(f"  Values soft-deleted: {stats.values_deleted}")
            click.echo(f"  Definitions soft-deleted: {stats.definitions_deleted}")
            click.echo(f"  Flags reset: {stats.flags_reset}")
        else:
            stats = eav_migration_service.run_setup(db, manifest, dry_run=dry_run)
            if stats.entity_type_created:
                click.echo(f"  Entity type {manifest.entity_type}: "
                           f"{'would be created' if dry_run else 'created'}")
            for category in manifest.categories:
                click.echo(f"  {category}: {stats.created.get(category, 0)} created, "
                           f"{stats.existing.get(category, 0)} existing")
            click.echo(f"  Total: {stats.total_created} created, {stats.total_existing} existing")
    except EavServiceError as e:
        db.rollback()
        _fail(str(e))
    finally:
        db.close()

    click.echo("✓ Dry run complete" if dry_run else "✓ Done")


@cli.command()
@click.option("--entity-type", required=True, help="Entity type name (e.g. User)")
@click.option("--dry-run", is_flag=True, help="Only count orphaned values")
def purge_orphans(entity_type: str, dry_run: bool):
    """Soft-delete generic attribute values whose owning row is gone."""
    db = SessionLocal()
    try:
        count = eav_service.purge_orphaned_values(db, entity_type, dry_run=dry_run)
    except EavServiceError as e:
        db.rollback()
        _fail(str(e))
    finally:
        db.close()

    if dry_run:
        click.echo(f"Found {count} orphaned value(s) for {entity_type}")
    else:
        click.echo(f"✓ Purged {count} orphaned value(s) for {entity_type}")


@cli.command()
@click.option("--entity-type", required=True, help="Entity type name (e.g. User)")
@click.option("--include-inactive", is_flag=True, help="Include inactive definitions")
def list_attributes(entity_type: str, include_inactive: bool):
    """List attribute definitions of an entity type."""
    db = SessionLocal()
    try:
        definitions = eav_service.list_available_attributes(
            db, entity_type, include_inactive=include_inactive
        )
        for d in definitions:
            flags = []
            if d.is_required:
                flags.append("required")
            if d.is_multi_valued:
                flags.append("multi")
            if not d.is_active:
                flags.append("inactive")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            click.echo(f"{d.sort_order:>5}  {d.name} ({d.value_type}){suffix}")
        click.echo(f"{len(definitions)} attribute(s)")
    except EavServiceError as e:
        _fail(str(e))
    finally:
        db.close()


@cli.command()
@click.option("--upgrade", is_flag=True, help="Upgrade to head if behind")
def db_status(upgrade: bool):
    """Report whether the database schema is at the alembic head."""
    status = schema_status(engine)
    if upgrade and not status.is_current:
        click.echo("→ Upgrading schema to head")
        try:
            status = upgrade_schema(engine)
        except SchemaUpgradeError as e:
            _fail(str(e))

    click.echo(f"Current: {', '.join(status.current) or '(none)'}")
    click.echo(f"Head:    {', '.join(status.head) or '(none)'}")
    if status.is_current:
        click.echo("✓ Database is up to date")
    elif status.is_unversioned:
        _fail("Database has no alembic revision; run with --upgrade")
    else:
        _fail("Database is behind head; run with --upgrade")


def main():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    cli()


if __name__ == "__main__":
    main()
