import pytest

from mediz.application.services.plan_catalog import PlanDefinition
from mediz.domain.exceptions import PlanNotFound
from mediz.domain.models import PlanAttributes, PlanInterval


def test_upsert_normalizes_currency_and_interval(monthly_plan):
    assert monthly_plan.currency == "BRL"
    assert monthly_plan.interval is PlanInterval.MONTH
    assert monthly_plan.provider == "stripe"
    assert monthly_plan.external_id == "price_monthly"


def test_second_upsert_overwrites_currency_and_interval(catalog, monthly_plan, caplog):
    corrected = catalog.upsert_plan(
        "price_monthly",
        PlanAttributes(name="Mensal", currency="USD", interval="YEAR", amount=990),
    )

    assert corrected.id == monthly_plan.id
    assert (corrected.currency, corrected.interval) == ("USD", PlanInterval.YEAR)
    assert catalog.find_plan_by_external_id("price_monthly").amount == 990
    assert "Correcting plan" in caplog.text


def test_lookup_is_exact(catalog, monthly_plan):
    with pytest.raises(PlanNotFound):
        catalog.find_plan_by_external_id("PRICE_MONTHLY")
    with pytest.raises(PlanNotFound):
        catalog.find_plan_by_external_id("")


def test_lookup_covers_hotmart_identifiers(catalog, hotmart_plan):
    assert catalog.find_plan_by_external_id("offer_month").id == hotmart_plan.id
    assert hotmart_plan.provider == "hotmart"


def test_invalid_attributes_rejected():
    with pytest.raises(ValueError):
        PlanAttributes(name="x", currency="REAL", interval="MONTH", amount=100)
    with pytest.raises(ValueError):
        PlanAttributes(name="x", currency="BRL", interval="QUARTER", amount=100)
    with pytest.raises(ValueError):
        PlanAttributes(name="x", currency="BRL", interval="MONTH", amount=100, interval_count=0)


def test_conflicting_identifier_becomes_value_error(catalog):
    catalog.upsert_plan(
        "price_other",
        PlanAttributes(
            name="Outro",
            currency="BRL",
            interval="MONTH",
            amount=100,
            extra_ids={"hotmart_id": "h1"},
        ),
    )
    with pytest.raises(ValueError):
        catalog.upsert_plan(
            "price_third",
            PlanAttributes(
                name="Terceiro",
                currency="BRL",
                interval="MONTH",
                amount=100,
                extra_ids={"hotmart_id": "h1"},
            ),
        )


def test_deactivate_plan(catalog, monthly_plan, yearly_plan):
    catalog.deactivate_plan(monthly_plan.id)

    assert [plan.id for plan in catalog.list_plans(active_only=True)] == [yearly_plan.id]
    assert len(catalog.list_plans()) == 2
    with pytest.raises(PlanNotFound):
        catalog.deactivate_plan(9999)


def test_list_plans_by_provider(catalog, monthly_plan, hotmart_plan):
    assert [plan.id for plan in catalog.list_plans(provider="hotmart")] == [hotmart_plan.id]


def test_sync_catalog_counts(catalog, monthly_plan):
    result = catalog.sync_catalog(
        [
            PlanDefinition(
                "price_monthly",
                PlanAttributes(name="Mensal", currency="BRL", interval="MONTH", amount=3490),
            ),
            PlanDefinition(
                "price_weekly",
                PlanAttributes(name="Semanal", currency="BRL", interval="WEEK", amount=990),
            ),
            PlanDefinition(
                "offer_year",
                PlanAttributes(name="Anual", currency="BRL", interval="YEAR", amount=29900),
                id_kind="hotmart_offer_key",
            ),
        ]
    )

    assert (result.created, result.updated, result.corrected) == (2, 1, 0)
    assert catalog.find_plan_by_external_id("price_monthly").amount == 3490


def test_from_dict_collects_extra_ids():
    attributes = PlanAttributes.from_dict(
        {"name": "Anual", "currency": "brl", "interval": "year", "amount": "29900", "hotmart_id": 42}
    )
    assert attributes.extra_ids == {"hotmart_id": "42"}
    assert attributes.interval is PlanInterval.YEAR


def test_upsert_under_another_id_kind_updates_the_same_plan(catalog, monthly_plan, caplog):
    moved = catalog.upsert_plan(
        "price_monthly",
        PlanAttributes(name="Mensal", currency="USD", interval="YEAR", amount=990),
        id_kind="hotmart_offer_key",
    )

    assert moved.id == monthly_plan.id
    assert len(catalog.list_plans()) == 1
    assert (moved.stripe_price_id, moved.hotmart_offer_key) == (None, "price_monthly")
    assert moved.provider == "hotmart"
    found = catalog.find_plan_by_external_id("price_monthly")
    assert (found.id, found.currency, found.interval) == (monthly_plan.id, "USD", PlanInterval.YEAR)
    assert "now identifies price_monthly as hotmart_offer_key" in caplog.text


def test_upsert_keeps_other_identifiers_of_the_plan(catalog):
    catalog.upsert_plan(
        "price_combo",
        PlanAttributes(
            name="Combo",
            currency="BRL",
            interval="MONTH",
            amount=100,
            extra_ids={"hotmart_id": "h9"},
        ),
    )

    updated = catalog.upsert_plan(
        "price_combo", PlanAttributes(name="Combo", currency="BRL", interval="MONTH", amount=200)
    )

    assert updated.hotmart_id == "h9"
    assert catalog.find_plan_by_external_id("h9").amount == 200
