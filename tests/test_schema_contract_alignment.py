"""Schema contract alignment checks between ORM metadata and migration DDL."""

from __future__ import annotations

import re
from pathlib import Path

import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from backend.db.base import Base


MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "backend"
    / "db"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)


def _ddl_columns() -> dict[str, set[str]]:
    source = MIGRATION_PATH.read_text(encoding="utf-8")
    pattern = re.compile(r"CREATE TABLE (\w+) \((.*?)\n\s*\);", re.S)

    tables: dict[str, set[str]] = {}
    for table_name, body in pattern.findall(source):
        columns: set[str] = set()
        for raw_line in body.splitlines():
            line = raw_line.strip()
            if not line or line.startswith(("CONSTRAINT", "REFERENCES", "(", ")")):
                continue
            column_name = line.split()[0].rstrip(",")
            columns.add(column_name)
        tables[table_name] = columns

    return tables


def _ddl_constraint_names() -> set[str]:
    source = MIGRATION_PATH.read_text(encoding="utf-8")
    return set(re.findall(r"CONSTRAINT (\w+)", source))


def test_orm_tables_and_columns_match_migration_contract() -> None:
    """ORM models must cover all migration tables/columns exactly."""

    ddl = _ddl_columns()
    mapped_tables = Base.metadata.tables

    assert sorted(set(ddl) - set(mapped_tables)) == []
    assert sorted(set(mapped_tables) - set(ddl)) == []

    column_mismatches: dict[str, dict[str, list[str]]] = {}
    for table_name in sorted(mapped_tables):
        ddl_columns = ddl[table_name]
        orm_columns = {column.name for column in mapped_tables[table_name].columns}

        missing_columns = sorted(ddl_columns - orm_columns)
        extra_columns = sorted(orm_columns - ddl_columns)
        if missing_columns or extra_columns:
            column_mismatches[table_name] = {
                "missing_columns": missing_columns,
                "extra_columns": extra_columns,
            }

    assert column_mismatches == {}, (
        "Migration/ORM column mismatches detected: "
        f"{column_mismatches}"
    )


def test_orm_check_constraint_names_exist_in_migration() -> None:
    ddl_names = _ddl_constraint_names()
    orm_names: set[str] = set()
    for table in Base.metadata.tables.values():
        for constraint in table.constraints:
            if constraint.name is not None and constraint.__class__.__name__ == "CheckConstraint":
                orm_names.add(str(constraint.name))

    assert orm_names
    assert sorted(orm_names - ddl_names) == []
