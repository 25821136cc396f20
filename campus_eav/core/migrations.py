"""Schema revision checks behind the ``db-status`` command.

Compares the revision stamped in the database with the newest script under
``alembic/versions`` and, on request, upgrades to it. On PostgreSQL the
upgrade holds a transaction-scoped advisory lock so concurrent deploys
queue up instead of racing each other.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import text
from sqlalchemy.engine import Engine

from campus_eav.core.config import settings

PROJECT_ROOT = Path(__file__).resolve().parents[2]
UPGRADE_LOCK_KEY = 7310452


class SchemaUpgradeError(RuntimeError):
    """The database could not be brought to the head revision."""


@dataclass(frozen=True)
class SchemaStatus:
    current: tuple[str, ...]
    head: tuple[str, ...]

    @property
    def is_current(self) -> bool:
        return set(self.current) == set(self.head)

    @property
    def is_unversioned(self) -> bool:
        return not self.current


def alembic_config(database_url: str | None = None) -> Config:
    """Alembic config pointing at the project's migration scripts."""
    ini_path = PROJECT_ROOT / "alembic.ini"
    if not ini_path.is_file():
        raise SchemaUpgradeError(f"alembic.ini not found at {ini_path}")

    config = Config(str(ini_path))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    url = database_url or settings.DATABASE_URL
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    # Leave the host application's logging setup alone
    config.attributes["configure_logger"] = False
    return config


def schema_status(engine: Engine) -> SchemaStatus:
    script = ScriptDirectory.from_config(alembic_config(engine.url.render_as_string(False)))
    with engine.connect() as connection:
        # No alembic_version table reads as no revision
        current = MigrationContext.configure(connection).get_current_heads()
    return SchemaStatus(current=tuple(current), head=tuple(script.get_heads()))


def upgrade_schema(engine: Engine) -> SchemaStatus:
    """
    Upgrade to head on a single connection and return the new status.

    Raises:
        SchemaUpgradeError: if the database is still behind afterwards
    """
    config = alembic_config(engine.url.render_as_string(False))
    with engine.begin() as connection:
        if connection.dialect.name == "postgresql":
            connection.execute(
                text("SELECT pg_advisory_xact_lock(:key)"), {"key": UPGRADE_LOCK_KEY}
            )
        config.attributes["connection"] = connection
        command.upgrade(config, "head")

    status = schema_status(engine)
    if not status.is_current:
        raise SchemaUpgradeError(
            f"Schema is at {', '.join(status.current) or '(none)'} "
            f"after upgrade; expected {', '.join(status.head)}"
        )
    return status
