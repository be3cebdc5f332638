"""Pull provider catalogs into the local plan table.

Usage:
    python scripts/sync_plans.py --stripe
    python scripts/sync_plans.py --hotmart-catalog hotmart_plans.json

The Hotmart catalog is a JSON list of objects with ``offer_key``,
``name``, ``currency``, ``interval``, ``interval_count`` and ``amount``.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from mediz.application.services.plan_catalog import PlanCatalog, PlanDefinition
from mediz.core.config import Settings
from mediz.core.logging import configure_logging
from mediz.domain.models import PlanAttributes
from mediz.infrastructure.persistence.sqlite import SQLitePersistence
from mediz.services.stripe_service import StripeService


def load_hotmart_catalog(path: Path) -> List[PlanDefinition]:
    entries = json.loads(path.read_text(encoding="utf-8"))
    definitions = []
    for entry in entries:
        offer_key = entry.get("offer_key")
        if not offer_key:
            raise ValueError(f"Catalog entry without offer_key: {entry!r}")
        definitions.append(
            PlanDefinition(
                external_id=str(offer_key),
                attributes=PlanAttributes.from_dict(entry),
                id_kind="hotmart_offer_key",
            )
        )
    return definitions


def main() -> int:
    load_dotenv()
    configure_logging()

    parser = argparse.ArgumentParser(description="Sync billing plans from provider catalogs.")
    parser.add_argument("--stripe", action="store_true", help="Fetch active recurring Stripe prices")
    parser.add_argument("--hotmart-catalog", type=Path, help="JSON file describing Hotmart offers")
    args = parser.parse_args()

    if not args.stripe and not args.hotmart_catalog:
        parser.error("Nothing to sync: pass --stripe and/or --hotmart-catalog")

    settings = Settings()
    persistence = SQLitePersistence(settings.database_path)
    try:
        catalog = PlanCatalog(persistence)
        definitions: List[PlanDefinition] = []
        if args.stripe:
            definitions.extend(
                StripeService(settings.stripe_secret_key, settings.stripe_webhook_secret).fetch_price_catalog()
            )
        if args.hotmart_catalog:
            definitions.extend(load_hotmart_catalog(args.hotmart_catalog))
        result = catalog.sync_catalog(definitions)
    except ValueError as exc:
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1
    finally:
        persistence.close()

    print(f"Plans created: {result.created}, updated: {result.updated}, corrected: {result.corrected}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
