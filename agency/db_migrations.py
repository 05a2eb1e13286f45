from __future__ import annotations

from pathlib import Path
from typing import Dict

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import NullPool


DOCUMENTS_TABLE = "documents"


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """SQLAlchemy URL for a `DB_PATH` that may be a postgres URL or a bare SQLite file path."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH indefinido para migrations.")
    if raw.startswith("postgres://"):
        return "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")):
        return raw
    return f"sqlite:///{Path(raw).expanduser().resolve().as_posix()}"


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini nao encontrado na raiz do projeto.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", (root / "migrations").as_posix())
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    # env.py must not swap in DATABASE_URL from the process environment
    alembic_cfg.attributes["ignore_env_url"] = True
    return alembic_cfg


def document_counts(db_path: str) -> Dict[str, int] | None:
    """Documents per collection, or None while the documents table does not exist."""
    engine = create_engine(to_sqlalchemy_url(db_path), poolclass=NullPool, future=True)
    try:
        if not inspect(engine).has_table(DOCUMENTS_TABLE):
            return None
        with engine.connect() as connection:
            rows = connection.execute(
                text(f"SELECT collection, COUNT(*) FROM {DOCUMENTS_TABLE} GROUP BY collection ORDER BY collection")
            ).all()
        return {str(collection): int(total) for collection, total in rows}
    finally:
        engine.dispose()


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Migrations (Alembic) and maintenance of the document store."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        click.echo(f"Migration aplicada ate {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Rollback aplicado ate {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)

    @db_group.command("status")
    def db_status() -> None:
        counts = document_counts(app.config["DB_PATH"])
        if counts is None:
            click.echo("Tabela documents ausente. Rode `flask db upgrade`.")
            return
        click.echo(f"Tabela documents pronta ({sum(counts.values())} documentos).")
        for collection, total in counts.items():
            click.echo(f"  {collection}: {total}")

    @db_group.command("seed-catalog")
    def db_seed_catalog() -> None:
        from agency.runtime import get_runtime

        runtime = get_runtime(app)
        repos = runtime.system_repositories()
        try:
            created = runtime.catalog.seed_defaults(repos)
        finally:
            repos.close()
        click.echo(f"Catalogo: {created} servicos criados.")
