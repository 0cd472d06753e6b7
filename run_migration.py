import logging
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

logger = logging.getLogger("portal.migrations")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "backend" / "migrations"


def _database_url() -> str:
    for key in ("DATABASE_URL", "SUPABASE_DB_URL"):
        raw = (os.environ.get(key) or "").strip()
        if raw:
            return raw
    return ""


def run_migrations() -> int:
    """
    按文件名顺序执行 backend/migrations/*.sql。

    中文注释:
    - 每个文件单独提交：枚举新增值必须先提交才能在后续语句中使用。
    - 所有 migration 都写成可重复执行（IF NOT EXISTS / CREATE OR REPLACE）。
    """
    db_url = _database_url()
    if not db_url:
        logger.error("DATABASE_URL (or SUPABASE_DB_URL) is not configured")
        return 1

    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    conn = psycopg2.connect(db_url)
    try:
        for path in files:
            logger.info("applying %s", path.name)
            with conn:
                with conn.cursor() as cur:
                    cur.execute(path.read_text(encoding="utf-8"))
    except psycopg2.Error as e:
        logger.error("migration failed: %s", e)
        return 1
    finally:
        conn.close()

    logger.info("%d migration(s) applied", len(files))
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    load_dotenv()
    sys.exit(run_migrations())
