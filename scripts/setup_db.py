"""
scripts/setup_db.py — Initialize the database schema and default settings.

Run once before starting the application for the first time:
    python scripts/setup_db.py

Creates all tables defined in leadflow/db/models.py via SQLAlchemy metadata
and seeds the runtime toggles (auto-send off, approval required).
"""

import sys
import os

# Ensure the project root is on the path so we can import `leadflow`
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import inspect, text

from leadflow.config import settings
from leadflow.db.session import engine, get_session, init_db
from leadflow.logging_config import configure_logging
from leadflow.services.runtime_settings import load_snapshot


def setup_db() -> None:
    configure_logging()
    print("🔌 Connecting to database...")
    print(f"   URL: {engine.url.render_as_string(hide_password=True)}")

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    print("✅ Connection successful.")

    print("\n📦 Creating tables and seeding settings...")
    init_db()

    tables = inspect(engine).get_table_names()
    print(f"✅ Tables in database: {tables}")

    with get_session() as db:
        snapshot = load_snapshot(db)
    print("\n⚙️  Runtime settings:")
    for key, value in snapshot.as_dict().items():
        print(f"   {key:32s} {value}")

    print(f"\n   Mailer dry run: {settings.mailer_dry_run}")
    print("\n🎉 Database setup complete!")


if __name__ == "__main__":
    setup_db()
