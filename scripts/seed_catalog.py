"""
Seed Catalog — departments, modules and module incompatibilities.

Usage:
    python scripts/seed_catalog.py                # Uses development DB
    python scripts/seed_catalog.py --env production

This script is idempotent — safe to run multiple times.
"""

import argparse
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from app.models import db
from app.services.catalog_seed import INCOMPATIBLE_PAIRS, MODULES, seed_catalog


def main():
    parser = argparse.ArgumentParser(description="Seed access-request catalog data")
    parser.add_argument(
        "--env",
        default="development",
        choices=["development", "production"],
        help="Config environment (default: development)",
    )
    args = parser.parse_args()

    app = create_app(args.env)
    with app.app_context():
        print("Seeding catalog...")
        summary = seed_catalog()
        db.session.commit()
        print(f"  Departments: {summary['departments']} created")
        print(f"  Modules: {summary['modules']} created ({len(MODULES)} defined)")
        print(
            f"  Incompatibilities: {summary['incompatibilities']} created "
            f"({len(INCOMPATIBLE_PAIRS)} defined)"
        )
        print("Done.")


if __name__ == "__main__":
    main()
