#!/usr/bin/env python3
"""
Import a CSV file from the command line, the same way the upload endpoint does.

Usage:
  python load_csv.py --type attendance --teacher T100 attendance.csv

DATABASE_URL is read from the environment (or .env).
"""

import argparse
import json
import sys

from dotenv import load_dotenv

import csv_import
import db


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import an academic records CSV into PostgreSQL.")
    parser.add_argument("path", help="CSV file to import")
    parser.add_argument("--type", required=True, choices=sorted(csv_import.UPLOAD_TYPES), help="Upload type")
    parser.add_argument("--teacher", required=True, help="Teacher ID recorded as owner/supervisor")
    return parser.parse_args(argv)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)

    with open(args.path, encoding="utf-8-sig") as f:
        csv_text = f.read()

    try:
        rows = csv_import.prepare_upload(args.type, csv_text, args.teacher)
    except csv_import.UploadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with db.open_store() as store:
        summary = csv_import.import_rows(args.type, rows, args.teacher, store)

    print(json.dumps({"success": True, **summary.as_dict()}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
