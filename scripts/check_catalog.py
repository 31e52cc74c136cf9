#!/usr/bin/env python3
"""
Check a catalog site directory for records and images that disagree.

Reports records whose image is missing, images that have no record, records
that don't parse, and temp files left by interrupted writes. Exits 1 when
anything is found.

Usage:
    python scripts/check_catalog.py
    python scripts/check_catalog.py --root /srv/shop --clean-temp
"""
import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "backend"))

import catalog_db as db  # noqa: E402
from catalog_config import CatalogSettings  # noqa: E402
from catalog_lock import lock_status  # noqa: E402

LABELS = {
    "missing_images": "Records without their image",
    "unrecorded_images": "Images without a record",
    "corrupt_records": "Unreadable records",
    "stale_temps": "Leftover temp files",
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Check catalog consistency")
    parser.add_argument("--root", type=Path, default=None)
    parser.add_argument("--clean-temp", action="store_true",
                        help="Delete leftover temp files (skipped while a writer holds the lock)")
    args = parser.parse_args(argv)

    settings = CatalogSettings.from_env(root=args.root)
    print(f"Catalog: {settings.root}")

    lock = lock_status(settings.root)
    if lock:
        state = "alive" if lock["alive"] else "stale"
        print(f"  Lock held by {lock.get('owner', '?')} (PID {lock.get('pid')}, {state})")

    report = db.verify_catalog(settings.data_dir, settings.images_dir)
    problems = 0
    for key, label in LABELS.items():
        entries = report[key]
        print(f"  {label:<28} {len(entries)}")
        for name in entries:
            print(f"    {name}")
        problems += len(entries)

    if args.clean_temp and report["stale_temps"]:
        if lock and lock["alive"]:
            print("\nWriter active, not cleaning temp files.")
        else:
            removed = db.clean_stale_temps(settings.data_dir, settings.images_dir)
            print(f"\nRemoved {len(removed)} temp files.")
            problems -= len(removed)

    if problems:
        print(f"\n{problems} problem(s) found.")
        return 1
    print("\nCatalog is consistent.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
