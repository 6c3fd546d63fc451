"""
过期临时 Build 清理任务

用法：
    python -m hangar.sweep
    python -m hangar.sweep --cutoff 2026-01-01T00:00:00+00:00
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import List, Optional

from hangar.core.database import get_db
from hangar.core.logging import end_run, get_logger, setup_logging, start_run
from hangar.services.catalog import StaticCatalog
from hangar.services.temp_links import TempLinkService

logger = get_logger(__name__)


def _parse_cutoff(value: str) -> datetime:
    cutoff = datetime.fromisoformat(value)
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=timezone.utc)
    return cutoff


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Delete expired temp builds")
    parser.add_argument(
        "--cutoff",
        type=_parse_cutoff,
        default=None,
        help="ISO-8601 timestamp; defaults to now (UTC)",
    )
    args = parser.parse_args(argv)

    setup_logging()
    start_run()
    logger.info("temp_sweep_started", cutoff=args.cutoff.isoformat() if args.cutoff else None)

    try:
        for db in get_db():
            # 清理不需要解析目录条目
            service = TempLinkService(db, StaticCatalog())
            deleted = service.cleanup_expired_temp(args.cutoff)
            logger.info("temp_sweep_finished", deleted=deleted)
    finally:
        end_run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
