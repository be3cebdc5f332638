"""Repair subscription period ends that drifted from their plan interval."""

import argparse
import sys

from dotenv import load_dotenv

from mediz.application.services.entitlement import EntitlementResolver
from mediz.application.services.subscription_ledger import SubscriptionLedger
from mediz.core.config import Settings
from mediz.core.logging import configure_logging
from mediz.infrastructure.persistence.sqlite import SQLitePersistence


def main() -> int:
    load_dotenv()
    configure_logging()

    parser = argparse.ArgumentParser(description="Recalculate subscription period ends.")
    parser.add_argument("--user-id", type=int, help="Only this user's subscriptions")
    args = parser.parse_args()

    persistence = SQLitePersistence(Settings().database_path)
    try:
        ledger = SubscriptionLedger(persistence)
        if args.user_id is not None:
            summary = ledger.recalculate_user_periods(args.user_id)
        else:
            summary = ledger.recalculate_all_periods()
        report = EntitlementResolver(ledger, persistence).premium_count_report()
    finally:
        persistence.close()

    print(f"Checked {summary.total} subscriptions, corrected {summary.updated_count}.")
    if summary.updated_ids:
        print("Corrected ids:", ", ".join(str(item) for item in summary.updated_ids))
    print(
        f"Premium users: {report.premium_users} "
        f"(entitled subscriptions: {report.entitled_subscriptions}, "
        f"users with more than one: {report.users_with_multiple})"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
