#!/usr/bin/env python3
"""
Operator recovery for webhook reconciliation.

Usage:
    # Re-run a ledgered event that failed after admission (e.g. provider outage)
    python reconcile.py --replay evt_123

    # Re-grant attendance for a succeeded transaction
    python reconcile.py --regrant 42
"""

import argparse
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from payhook.core.config import settings
from payhook.core.logging import setup_logging
from payhook.db.session import SessionLocal
from payhook.services.entitlements import regrant_for_transaction
from payhook.services.providers.registry import build_provider
from payhook.services.reconciliation import EventNotFound, WebhookReconciler


def replay_event(event_id: str, provider_name: str) -> bool:
    """Replay one admitted event through the pipeline"""
    reconciler = WebhookReconciler(
        build_provider(provider_name, settings),
        fixed_fee_cents=settings.FIXED_FEE_CENTS,
        creator_share=settings.CREATOR_SHARE,
    )
    db = SessionLocal()
    try:
        result = reconciler.replay(event_id, db)
    except EventNotFound as e:
        print(f"❌ {e}")
        return False
    finally:
        db.close()

    if result.status_code != 200:
        print(f"❌ Replay failed ({result.status_code}): {result.body.get('code')} - {result.body.get('message')}")
        return False

    if result.body.get("ignored"):
        print(f"ℹ️  Event {event_id} ignored: {result.body.get('reason')}")
    else:
        print(f"✅ Replayed {event_id}: transaction {result.body.get('transaction_id')} ({result.body.get('outcome')})")
        if result.body.get("warning"):
            print(f"⚠️  {result.body['warning']}: {result.body.get('detail')}")
    return True


def regrant(transaction_id: int) -> bool:
    """Re-run entitlement fan-out for a succeeded transaction"""
    db = SessionLocal()
    try:
        granted = regrant_for_transaction(transaction_id, db)
        print(f"✅ Transaction {transaction_id}: {granted} session(s) granted")
        return True
    except ValueError as e:
        print(f"❌ {e}")
        return False
    except Exception as e:
        print(f"❌ Error: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description='Replay webhook events or re-grant entitlements',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Replay a Stripe event from the ledger
  python %(prog)s --replay evt_1PZ...

  # Replay an event from another provider
  python %(prog)s --replay evt_1PZ... --provider stripe

  # Re-grant attendance for transaction 42
  python %(prog)s --regrant 42
        """
    )

    parser.add_argument('--replay', metavar='EVENT_ID', help='Event id to replay from the ledger')
    parser.add_argument('--provider', default=settings.PAYMENT_PROVIDER, help='Provider the event came from')
    parser.add_argument('--regrant', type=int, metavar='TRANSACTION_ID', help='Transaction id to re-grant')

    args = parser.parse_args()

    if bool(args.replay) == (args.regrant is not None):
        print("❌ Error: Must specify exactly one action (--replay or --regrant)")
        parser.print_help()
        sys.exit(1)

    setup_logging()

    if args.replay:
        success = replay_event(args.replay, args.provider)
    else:
        success = regrant(args.regrant)

    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
