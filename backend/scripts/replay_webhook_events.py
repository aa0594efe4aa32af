#!/usr/bin/env python3
"""
Replay subscription webhook events that failed to apply.

Usage:
    # Replay every event whose last outcome was an error
    python replay_webhook_events.py

    # Replay at most 50 of them
    python replay_webhook_events.py --limit 50

    # Replay one stored event, whatever its last outcome
    python replay_webhook_events.py --event-id evt_123
"""

import argparse
import os
import sys

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.replay_service import replay_webhook_events
from app.services.subscription_repository import find_user_by_id_or_correlation_id, get_entitlement_summary


def main():
    parser = argparse.ArgumentParser(description="Replay failed subscription webhook events")
    parser.add_argument("--event-id", help="Replay a single stored event")
    parser.add_argument("--limit", type=int, help="Maximum number of failed events to replay")
    args = parser.parse_args()

    setup_logging()
    db = SessionLocal()
    try:
        try:
            results = replay_webhook_events(db, event_id=args.event_id, limit=args.limit)
        except ValueError as e:
            print(f"❌ {e}")
            return 1

        if not results:
            print("✅ No failed webhook events to replay")
            return 0

        failures = 0
        for item in results:
            result = item["result"]
            marker = "✅" if result.get("success") else "❌"
            if not result.get("success"):
                failures += 1
            print(f"{marker} {item['event_id']}: {result}")

            user = find_user_by_id_or_correlation_id(item["app_user_id"], db) if item["app_user_id"] else None
            if user:
                summary = get_entitlement_summary(user.id, db)
                print(f"   entitlement: {summary.model_dump_json()}")

        print(f"\nReplayed {len(results)} event(s), {failures} still failing")
        return 1 if failures else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
