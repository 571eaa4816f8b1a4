#!/usr/bin/env python3
"""
ZIP to CBSA crosswalk loader.

Reads a ZIP-CBSA crosswalk CSV and upserts it into zip_to_cbsa.
Column names are matched case-insensitively; accepted aliases:

    zip_code:           ZIP, ZIP_CODE
    cbsa_code:          CBSA, CBSA_CODE
    cbsa_name:          CBSA_NAME, CBSA_TITLE, NAME
    residential_ratio:  RES_RATIO, RESIDENTIAL_RATIO

The HUD USPS file has no CBSA title column; its rows are named
"City, ST" from USPS_ZIP_PREF_CITY and USPS_ZIP_PREF_STATE instead.

Usage:
    python scripts/load_crosswalk.py ZIP_CBSA_122024.csv
    python scripts/load_crosswalk.py data.csv --database-url sqlite:///./costwise.db
"""

import argparse
import logging
import os
import sys

from costwise.core.config import reset_settings
from costwise.core.database import create_tables, get_session_factory
from costwise.core.location_resolver import LocationResolver, read_crosswalk_csv

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = argparse.ArgumentParser(description="Load a ZIP to CBSA crosswalk CSV")
    parser.add_argument("csv_path", help="Path to the crosswalk CSV")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL for this run",
    )
    args = parser.parse_args()

    if not os.path.exists(args.csv_path):
        logger.error(f"File not found: {args.csv_path}")
        return 1

    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url
        reset_settings()

    create_tables()
    resolver = LocationResolver(get_session_factory())
    loaded = resolver.load_crosswalk(read_crosswalk_csv(args.csv_path))
    logger.info(f"Loaded {loaded} crosswalk rows from {args.csv_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
