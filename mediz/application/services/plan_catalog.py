"""Plan catalog: provider identifiers mapped to purchasable plans."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ...domain.exceptions import PlanNotFound
from ...domain.models import EXTERNAL_ID_KINDS, Plan, PlanAttributes
from ...domain.ports.persistence import PlanRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanDefinition:
    """One entry of a provider catalog, as fed to ``PlanCatalog.sync_catalog``."""

    external_id: str
    attributes: PlanAttributes
    id_kind: str = "stripe_price_id"


@dataclass(slots=True)
class CatalogSyncResult:
    created: int = 0
    updated: int = 0
    corrected: int = 0


class PlanCatalog:
    """Registry mapping provider identifiers to plan attributes.

    The provider catalog is the source of truth: upserting an existing
    identifier overwrites whatever was stored before.
    """

    def __init__(self, plans: PlanRepository) -> None:
        self._plans = plans

    def upsert_plan(
        self,
        external_id: str,
        attributes: PlanAttributes,
        id_kind: str = "stripe_price_id",
    ) -> Plan:
        if not external_id:
            raise ValueError("Identificador externo do plano é obrigatório.")
        if id_kind not in EXTERNAL_ID_KINDS:
            raise ValueError(f"Tipo de identificador inválido: {id_kind}")

        existing = self._plans.find_plan_by_external_id(external_id)
        if existing and (existing.currency, existing.interval) != (
            attributes.currency,
            attributes.interval,
        ):
            logger.warning(
                "Correcting plan %s (%s): %s/%s -> %s/%s",
                existing.id,
                external_id,
                existing.currency,
                existing.interval.value,
                attributes.currency,
                attributes.interval.value,
            )
        try:
            plan = self._plans.upsert_plan(id_kind, external_id, attributes)
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Plano {external_id} conflita com outro plano do catálogo: {exc}") from exc
        if existing is None:
            logger.info("Registered plan %s for %s", plan.id, external_id)
        elif getattr(existing, id_kind) != external_id:
            logger.warning("Plan %s now identifies %s as %s", plan.id, external_id, id_kind)
        return plan

    def find_plan_by_external_id(self, external_id: str) -> Plan:
        plan = self._plans.find_plan_by_external_id(external_id) if external_id else None
        if plan is None:
            raise PlanNotFound(external_id)
        return plan

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        return self._plans.get_plan(plan_id)

    def list_plans(self, active_only: bool = False, provider: Optional[str] = None) -> List[Plan]:
        plans = self._plans.list_plans(active_only=active_only)
        if provider:
            plans = [plan for plan in plans if plan.provider == provider]
        return plans

    def deactivate_plan(self, plan_id: int) -> Plan:
        """Retire a plan from sale. Existing subscriptions keep referencing it."""
        if self.get_plan(plan_id) is None:
            raise PlanNotFound(str(plan_id))
        plan = self._plans.set_plan_active(plan_id, False)
        logger.info("Deactivated plan %s", plan_id)
        return plan

    def sync_catalog(self, definitions: Iterable[PlanDefinition]) -> CatalogSyncResult:
        result = CatalogSyncResult()
        for definition in definitions:
            existing = self._plans.find_plan_by_external_id(definition.external_id)
            self.upsert_plan(definition.external_id, definition.attributes, definition.id_kind)
            if existing is None:
                result.created += 1
                continue
            result.updated += 1
            if (existing.currency, existing.interval) != (
                definition.attributes.currency,
                definition.attributes.interval,
            ):
                result.corrected += 1
        logger.info(
            "Catalog sync finished: created=%d updated=%d corrected=%d",
            result.created,
            result.updated,
            result.corrected,
        )
        return result
