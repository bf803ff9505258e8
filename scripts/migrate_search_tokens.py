#!/usr/bin/env python3
import argparse
import json
import os
import sys
import time

import firebase_admin
from firebase_admin import credentials, firestore

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quizhub.services.search_service import backfill_search_tokens  # noqa: E402


def init_firestore():
    if os.path.exists("firebase-credentials.json"):
        cred = credentials.Certificate("firebase-credentials.json")
    else:
        raw = (os.getenv("FIREBASE_CREDENTIALS", "") or "").strip()
        if not raw:
            raise RuntimeError("Missing firebase-credentials.json and FIREBASE_CREDENTIALS env var.")
        cred = credentials.Certificate(json.loads(raw))
    if not firebase_admin._apps:
        firebase_admin.initialize_app(cred)
    return firestore.client()


def main():
    parser = argparse.ArgumentParser(description="Backfill searchTokens on questions that do not have them yet.")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Write tokens. Without this flag, the script only counts the questions it would update.",
    )
    args = parser.parse_args()

    db = init_firestore()
    stats, errors = backfill_search_tokens(db, time.time(), apply=args.apply)
    mode = "APPLY" if args.apply else "DRY-RUN"
    print(f"[{mode}] total={stats['total']} updated={stats['updated']} skipped={stats['skipped']} errors={stats['errors']}")
    for line in errors[:10]:
        print(f"  {line}")
    if not args.apply:
        print("No changes were written. Re-run with --apply to persist.")
    return 1 if stats['errors'] else 0


if __name__ == "__main__":
    raise SystemExit(main())
