#!/usr/bin/env python
import sys
import tempfile
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.autogenerate import compare_metadata
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine

from paymenthub.db.models import Base

BACKEND_DIR = Path(__file__).parent.parent


def alembic_config(database_url: str) -> Config:
    alembic_ini = BACKEND_DIR / "alembic.ini"
    if not alembic_ini.exists():
        raise FileNotFoundError(f"alembic.ini not found in {BACKEND_DIR}")
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def revision_problems(script: ScriptDirectory) -> list[str]:
    problems = []
    revisions = list(script.walk_revisions())

    revision_ids = [rev.revision for rev in revisions]
    if len(revision_ids) != len(set(revision_ids)):
        problems.append("Duplicate revision IDs found")

    for rev in revisions:
        if rev.down_revision and rev.down_revision not in revision_ids:
            problems.append(f"Missing dependency for revision {rev.revision}")

    heads = script.get_heads()
    if len(heads) > 1:
        problems.append(f"Multiple heads: {', '.join(sorted(heads))}")
    return problems


def schema_problems(config: Config, database_url: str) -> list[str]:
    """Upgrade to head and diff the resulting schema against the models."""
    command.upgrade(config, "head")
    engine = create_engine(database_url)
    try:
        with engine.connect() as connection:
            # Enum columns reflect as VARCHAR on SQLite
            context = MigrationContext.configure(connection, opts={"compare_type": False})
            diffs = compare_metadata(context, Base.metadata)
    finally:
        engine.dispose()
    return [f"Schema drift: {diff}" for diff in diffs]


def check_migrations(database_url: Optional[str] = None) -> list[str]:
    """Check that migrations form a single chain and produce the model schema."""
    with tempfile.TemporaryDirectory() as tmp:
        url = database_url or f"sqlite:///{Path(tmp) / 'check.db'}"
        config = alembic_config(url)
        problems = revision_problems(ScriptDirectory.from_config(config))
        if not problems:
            problems = schema_problems(config, url)
    return problems


if __name__ == "__main__":
    problems = check_migrations(sys.argv[1] if len(sys.argv) > 1 else None)
    for problem in problems:
        print(f"Error: {problem}")
    if problems:
        sys.exit(1)
    print("Migration check passed!")
