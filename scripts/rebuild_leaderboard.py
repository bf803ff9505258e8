#!/usr/bin/env python3
import argparse
import json
import os
import sys
import time

import firebase_admin
from firebase_admin import credentials, firestore

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quizhub.services import leaderboard_service  # noqa: E402


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


def rebuild_all(db, batch_size, start_after=""):
    total = 0
    cursor = start_after or ""
    while True:
        processed, cursor = leaderboard_service.rebuild_batch(db, cursor, batch_size=batch_size)
        total += processed
        print(f"processed={processed} next_start_after={cursor}")
        if cursor is None:
            return total


def main():
    parser = argparse.ArgumentParser(description="Recompute leaderboard accuracy for every user, then refresh the top list.")
    parser.add_argument("--batch-size", type=int, default=leaderboard_service.REBUILD_BATCH_SIZE)
    parser.add_argument("--start-after", default="", help="Resume after this user id.")
    args = parser.parse_args()

    db = init_firestore()
    total = rebuild_all(db, max(1, args.batch_size), args.start_after)
    entries = leaderboard_service.refresh_top(db, time.time(), firestore_module=firestore)
    print(f"Rebuilt {total} users; top list now has {len(entries)} entries.")


if __name__ == "__main__":
    main()
