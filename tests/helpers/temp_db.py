from __future__ import annotations

import shutil
import sqlite3
import tempfile
import time
import uuid
from pathlib import Path


_REPO_ROOT = Path(__file__).resolve().parents[2]
_TEMP_ROOT = Path(tempfile.gettempdir()).resolve()
_FORBIDDEN_PARTS = (".tmp_run",)
_FORBIDDEN_PREFIXES = ("agencia_live_",)


def assert_safe_temp_db_path(db_path: str) -> None:
    """Refuse any path that could point at a live agency database."""
    resolved = Path(db_path).resolve()
    if not resolved.is_relative_to(_TEMP_ROOT):
        raise ValueError(f"Temporary DB must live under TEMP: {resolved}")
    if resolved.is_relative_to(_REPO_ROOT):
        raise ValueError(f"Temporary DB cannot live inside repository: {resolved}")
    for part in (p.lower() for p in resolved.parts):
        if part in _FORBIDDEN_PARTS or part.startswith(_FORBIDDEN_PREFIXES):
            raise ValueError(f"Temporary DB cannot live under {part}: {resolved}")


def open_sqlite_temp_connection(db_path: str) -> sqlite3.Connection:
    assert_safe_temp_db_path(db_path)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=DELETE")
    return conn


class TempDbSandbox:
    """Throwaway folder under TEMP holding the document database and the local cache file."""

    def __init__(
        self,
        prefix: str = "plataforma_agencia_tests",
        db_name: str = "plataforma_agencia_test.db",
        cache_name: str = "local_cache_test.db",
    ) -> None:
        folder = _TEMP_ROOT / f"{prefix}_{uuid.uuid4().hex}"
        folder.mkdir(parents=True)
        self.temp_dir = str(folder)
        self.db_path = str(folder / db_name)
        self.cache_path = str(folder / cache_name)
        open_sqlite_temp_connection(self.db_path).close()

    def __enter__(self) -> "TempDbSandbox":
        return self

    def __exit__(self, *_exc) -> None:
        self.cleanup()

    def make_config(self, base_config, **overrides):
        """Subclass of `base_config` pointed at this sandbox, with project polling off."""
        attrs = {
            "DATABASE_DIR": self.temp_dir,
            "DB_PATH": self.db_path,
            "LOCAL_CACHE_PATH": self.cache_path,
            "PROJECT_REFRESH_ENABLED": False,
        }
        attrs.update(overrides)
        return type("SandboxConfig", (base_config,), attrs)

    def cleanup(self, attempts: int = 6) -> None:
        # SQLite handles may linger briefly on some platforms.
        for attempt in range(attempts):
            try:
                shutil.rmtree(self.temp_dir)
                return
            except FileNotFoundError:
                return
            except OSError:
                time.sleep(0.05 * (2**attempt))
        shutil.rmtree(self.temp_dir, ignore_errors=True)
