#!/usr/bin/env python3
"""Alembic bootstrap for databases created by seed_data.py (create_all).

If messaging tables already exist but alembic_version is missing, stamp
the initial revision before normal upgrades.
"""

from __future__ import annotations

import os
import subprocess

from sqlalchemy import inspect

from homebids.database import engine


BASELINE_REVISION = os.getenv("ALEMBIC_BASELINE_REVISION", "001")
MESSAGING_TABLES = ("users", "projects", "messages", "contractor_aliases")


def main() -> int:
    inspector = inspect(engine)
    has_alembic_version = inspector.has_table("alembic_version")
    has_messaging_schema = any(inspector.has_table(table) for table in MESSAGING_TABLES)

    if not has_alembic_version and has_messaging_schema:
        print(
            "Existing schema detected without alembic_version. "
            f"Stamping baseline: {BASELINE_REVISION}"
        )
        subprocess.run(["alembic", "stamp", BASELINE_REVISION], check=True)
    else:
        print("Alembic bootstrap check: no baseline stamp required")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
