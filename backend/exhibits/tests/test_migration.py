import importlib.util
from pathlib import Path

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from exhibits import models

MIGRATION = Path(__file__).resolve().parents[2] / "alembic" / "versions" / "20261018_01_exhibit_content_tables.py"


def _load_migration():
    spec = importlib.util.spec_from_file_location("exhibit_content_tables", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(engine, step):
    migration = _load_migration()
    with engine.begin() as connection:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            getattr(migration, step)()


def test_migration_matches_model_columns(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    _run(engine, "upgrade")

    inspector = sa.inspect(engine)
    for table in models.Base.metadata.sorted_tables:
        migrated = {column["name"] for column in inspector.get_columns(table.name)}
        assert migrated == set(table.columns.keys()), table.name
    indexes = {index["name"] for index in inspector.get_indexes("exhibit_audit_logs")}
    assert "ix_exhibit_audit_logs_target" in indexes

    _run(engine, "downgrade")
    assert sa.inspect(engine).get_table_names() == []
    engine.dispose()
