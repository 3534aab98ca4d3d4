from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from eventlottery.db.engine import make_engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to ``target_revision``."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def print_tables() -> None:
    engine = make_engine()
    insp = inspect(engine)
    for table in sorted(insp.get_table_names()):
        columns = ", ".join(col["name"] for col in insp.get_columns(table))
        print(f"{table}: {columns}")
    engine.dispose()


def main() -> None:
    upgrade_db()
    print_tables()


if __name__ == "__main__":
    main()
