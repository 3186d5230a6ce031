import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from upgrade_state.core.db import create_tables, dispose_db, get_session_factory, init_db
from upgrade_state.core.logging import configure_logging
from upgrade_state.core.settings import get_settings
from upgrade_state.services.legacy_import import import_legacy_upgrades

backend_dir = Path(__file__).resolve().parent.parent

logger = logging.getLogger("upgrade_state.import_legacy")


async def run(path: Optional[Path]) -> dict[str, int]:
    settings = get_settings()
    archive_path = path or settings.data.legacy_archive_path

    init_db()
    await create_tables()
    try:
        async with get_session_factory()() as session:
            stats = await import_legacy_upgrades(session, archive_path)
    finally:
        await dispose_db()

    logger.info("Import finished: %s", stats)
    return stats


def main() -> None:
    parser = argparse.ArgumentParser(description="Import legacy experience upgrade archives into the database.")
    parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        help="Legacy JSON archive file (defaults to DATA_DIR/LEGACY_ARCHIVE_FILE)",
    )
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL for this run")
    args = parser.parse_args()

    load_dotenv(backend_dir.parent / ".env")
    configure_logging(level=args.log_level)
    asyncio.run(run(args.path))


if __name__ == "__main__":
    main()
