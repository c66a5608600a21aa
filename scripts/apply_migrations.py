from __future__ import annotations

import logging
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "backend"))

from nearby.infra.migrations import migrate  # noqa: E402

MIGRATIONS_DIR = ROOT / "infra" / "migrations"


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    applied = migrate(MIGRATIONS_DIR)
    print(f"applied {len(applied)} migration(s)" if applied else "schema up to date")


if __name__ == "__main__":
    main()
