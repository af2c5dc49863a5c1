"""
Invoice generation tests.

Covers aggregation, backfill, numbering with collisions, atomic rollback and
double-billing prevention.
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from skymap.app.core.config import settings
from skymap.app.core.exceptions import (
    InsufficientPermissionsError,
    NoBillableItemsError,
    NumberGenerationExhaustedError,
    ResourceNotFoundError,
    ValidationError,
)
from skymap.app.domain.billing.invoice_generator import InvoiceGenerator
from skymap.app.models.billing_enums import InvoiceStatus, InvoiceType
from skymap.app.models.charge import Charge
from skymap.app.models.delivery import Delivery
from skymap.app.models.delivery_enums import DeliveryStatus
from skymap.app.models.invoice import Invoice
from skymap.app.models.invoice_item import InvoiceItem

WEEK_START = date(2026, 6, 1)
WEEK_END = date(2026, 6, 7)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def add_delivery(db, business_id, created_by, fee, created_at, dropoff_name="Mama Zawadi", charged=True):
    delivery = Delivery(
        business_id=business_id,
        pickup_address="Plot 12, Samora Avenue", pickup_name="Acme Warehouse", pickup_phone="0712000000",
        dropoff_address="Mikocheni B", dropoff_name=dropoff_name, dropoff_phone="0765000111",
        status=DeliveryStatus.DELIVERED,
        delivery_fee=Decimal(fee) if fee is not None else None,
        created_by=created_by,
        created_at=created_at,
    )
    db.add(delivery)
    await db.flush()

    if charged:
        db.add(Charge(
            delivery_id=delivery.id,
            business_id=business_id,
            amount=Decimal(fee),
            description="Delivery fee - Created by staff",
            created_at=created_at,
        ))
        await db.flush()
    return delivery


@pytest.fixture
async def week_of_charges(db_session, business, users):
    """Charges of 1000, 2000 and 1500 inside the week plus one just outside."""
    staff_id = users["staff"].id
    await add_delivery(db_session, business.id, staff_id, "1000", utc(2026, 6, 1, 0, 0, 0))
    await add_delivery(db_session, business.id, staff_id, "2000", utc(2026, 6, 3, 14, 15))
    await add_delivery(db_session, business.id, staff_id, "1500", utc(2026, 6, 7, 23, 30))
    await add_delivery(db_session, business.id, staff_id, "9999", utc(2026, 6, 8, 0, 0, 1))
    await db_session.commit()


async def generate(session_factory, business_id, actor, invoice_type=InvoiceType.INVOICE, **kwargs):
    async with session_factory() as session:
        return await InvoiceGenerator(session).generate(
            business_id=business_id,
            period_start=kwargs.pop("period_start", WEEK_START),
            period_end=kwargs.pop("period_end", WEEK_END),
            invoice_type=invoice_type,
            actor=actor,
            **kwargs
        )


@pytest.mark.asyncio
async def test_weekly_invoice_totals_its_charges(session_factory, business, actors, week_of_charges):
    invoice = await generate(session_factory, business.id, actors["staff"], due_date=date(2026, 6, 30))

    assert invoice.total_amount == Decimal("4500")
    assert len(invoice.items) == 3
    assert sum(item.amount for item in invoice.items) == invoice.total_amount
    assert sorted(item.amount for item in invoice.items) == [Decimal("1000"), Decimal("1500"), Decimal("2000")]
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.invoice_type == InvoiceType.INVOICE
    assert invoice.due_date == date(2026, 6, 30)
    assert re.fullmatch(r"INV-\d{8}-\d{4}", invoice.invoice_number)

    async with session_factory() as fresh:
        charges = (await fresh.execute(
            select(Charge).where(Charge.invoice_id == invoice.id)
        )).scalars().all()
        assert len(charges) == 3
        assert all(charge.billed_at is not None for charge in charges)

        outside = (await fresh.execute(
            select(Charge).where(Charge.amount == Decimal("9999"))
        )).scalar_one()
        assert outside.billed_at is None


@pytest.mark.asyncio
async def test_uncharged_deliveries_are_backfilled(db_session, session_factory, business, users, actors):
    await add_delivery(db_session, business.id, users["staff"].id, "1000", utc(2026, 6, 2, 9))
    backfill = await add_delivery(
        db_session, business.id, users["staff"].id, "800", utc(2026, 6, 4, 11),
        dropoff_name="Baraka Shop", charged=False
    )
    await add_delivery(
        db_session, business.id, users["staff"].id, None, utc(2026, 6, 5, 11), charged=False
    )
    backfill_id = backfill.id
    await db_session.commit()

    invoice = await generate(session_factory, business.id, actors["admin"])

    assert invoice.total_amount == Decimal("1800")
    backfilled_item = next(item for item in invoice.items if item.delivery_id == backfill_id)
    assert backfilled_item.description == "Delivery fee - Baraka Shop"
    assert backfilled_item.amount == Decimal("800")

    async with session_factory() as fresh:
        charge = (await fresh.execute(select(Charge).where(Charge.delivery_id == backfill_id))).scalar_one()
        assert charge.description == "Delivery fee - Baraka Shop"
        assert charge.id == backfilled_item.charge_id
        assert charge.invoice_id == invoice.id


@pytest.mark.asyncio
async def test_proforma_uses_prefix_and_leaves_charges_unbilled(session_factory, business, actors, week_of_charges):
    proforma = await generate(session_factory, business.id, actors["staff"], InvoiceType.PROFORMA)

    assert re.fullmatch(r"PRO-\d{8}-\d{4}", proforma.invoice_number)
    assert proforma.status == InvoiceStatus.PROFORMA
    assert proforma.total_amount == Decimal("4500")

    # The final invoice can still bill the same charges
    invoice = await generate(session_factory, business.id, actors["staff"])
    assert invoice.total_amount == Decimal("4500")


@pytest.mark.asyncio
async def test_overlapping_invoice_never_rebills_charges(session_factory, business, actors, week_of_charges):
    await generate(session_factory, business.id, actors["staff"])

    with pytest.raises(NoBillableItemsError):
        await generate(
            session_factory, business.id, actors["staff"],
            period_start=date(2026, 6, 3), period_end=date(2026, 6, 8)
        )


@pytest.mark.asyncio
async def test_overlap_allowed_when_double_billing_prevention_is_off(
    session_factory, business, actors, week_of_charges, mocker
):
    mocker.patch.object(settings, "prevent_double_billing", False)

    first = await generate(session_factory, business.id, actors["staff"])
    second = await generate(session_factory, business.id, actors["staff"])

    assert first.total_amount == second.total_amount == Decimal("4500")
    assert first.invoice_number != second.invoice_number


@pytest.mark.asyncio
async def test_colliding_number_is_regenerated(
    db_session, session_factory, business, users, actors, week_of_charges, mocker
):
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    db_session.add(Invoice(
        business_id=business.id,
        invoice_number=f"INV-{today}-1234",
        period_start=date(2026, 5, 1),
        period_end=date(2026, 5, 31),
        total_amount=Decimal("100"),
        created_by=users["admin"].id,
    ))
    await db_session.commit()

    randint = mocker.patch(
        "skymap.app.domain.billing.invoice_generator.random.randint",
        side_effect=[1234, 5678],
    )

    invoice = await generate(session_factory, business.id, actors["staff"])

    assert invoice.invoice_number == f"INV-{today}-5678"
    assert randint.call_count == 2

    async with session_factory() as fresh:
        stored = (await fresh.execute(
            select(Invoice).where(Invoice.invoice_number == f"INV-{today}-5678")
        )).scalar_one()
        assert stored.total_amount == Decimal("4500")


@pytest.mark.asyncio
async def test_number_generation_gives_up_after_bounded_attempts(
    db_session, session_factory, business, users, actors, mocker
):
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    business_id = business.id
    db_session.add(Invoice(
        business_id=business_id,
        invoice_number=f"INV-{today}-0007",
        period_start=date(2026, 5, 1),
        period_end=date(2026, 5, 31),
        total_amount=Decimal("100"),
        created_by=users["admin"].id,
    ))
    # Uncharged delivery: a failed generation must not leave its backfill behind
    await add_delivery(db_session, business_id, users["staff"].id, "700", utc(2026, 6, 2, 8), charged=False)
    await db_session.commit()

    randint = mocker.patch(
        "skymap.app.domain.billing.invoice_generator.random.randint",
        return_value=7,
    )

    with pytest.raises(NumberGenerationExhaustedError) as exc_info:
        await generate(session_factory, business_id, actors["staff"])

    assert randint.call_count == settings.invoice_number_max_attempts
    assert exc_info.value.status_code == 503

    async with session_factory() as fresh:
        assert await fresh.scalar(select(func.count(Invoice.id))) == 1
        assert await fresh.scalar(select(func.count(Charge.id))) == 0


@pytest.mark.asyncio
async def test_item_failure_rolls_back_everything(session_factory, db_session, business, users, actors, mocker):
    business_id = business.id
    await add_delivery(db_session, business_id, users["staff"].id, "1000", utc(2026, 6, 2, 8))
    await add_delivery(db_session, business_id, users["staff"].id, "650", utc(2026, 6, 3, 8), charged=False)
    await db_session.commit()

    mocker.patch.object(InvoiceGenerator, "_build_items", side_effect=RuntimeError("item insert failed"))

    with pytest.raises(RuntimeError, match="item insert failed"):
        await generate(session_factory, business_id, actors["staff"])

    async with session_factory() as fresh:
        assert await fresh.scalar(select(func.count(Invoice.id))) == 0
        assert await fresh.scalar(select(func.count(InvoiceItem.id))) == 0
        # Only the pre-existing charge survives; the backfill was rolled back
        assert await fresh.scalar(select(func.count(Charge.id))) == 1


@pytest.mark.asyncio
async def test_unique_violation_triggers_one_more_cycle(
    db_session, session_factory, business, users, actors, week_of_charges, mocker
):
    db_session.add(Invoice(
        business_id=business.id,
        invoice_number="INV-20260101-0001",
        period_start=date(2026, 1, 1),
        period_end=date(2026, 1, 31),
        total_amount=Decimal("100"),
        created_by=users["admin"].id,
    ))
    await db_session.commit()

    # A concurrent generator took the number between check and insert
    mocker.patch.object(
        InvoiceGenerator, "_next_invoice_number",
        side_effect=["INV-20260101-0001", "INV-20260101-0002"],
    )

    invoice = await generate(session_factory, business.id, actors["staff"])

    assert invoice.invoice_number == "INV-20260101-0002"
    assert len(invoice.items) == 3


@pytest.mark.asyncio
async def test_second_unique_violation_is_exhaustion(
    db_session, session_factory, business, users, actors, week_of_charges, mocker
):
    business_id = business.id
    db_session.add(Invoice(
        business_id=business_id,
        invoice_number="INV-20260101-0001",
        period_start=date(2026, 1, 1),
        period_end=date(2026, 1, 31),
        total_amount=Decimal("100"),
        created_by=users["admin"].id,
    ))
    await db_session.commit()

    mocker.patch.object(InvoiceGenerator, "_next_invoice_number", return_value="INV-20260101-0001")

    with pytest.raises(NumberGenerationExhaustedError):
        await generate(session_factory, business_id, actors["staff"])

    async with session_factory() as fresh:
        assert await fresh.scalar(select(func.count(Invoice.id))) == 1
        assert await fresh.scalar(select(func.count(Charge.id)).where(Charge.billed_at.is_not(None))) == 0


@pytest.mark.asyncio
async def test_other_integrity_errors_surface_without_retry(
    session_factory, business, actors, week_of_charges, mocker
):
    business_id = business.id
    build_items = mocker.patch.object(
        InvoiceGenerator, "_build_items",
        side_effect=IntegrityError(
            "INSERT INTO invoice_items", {}, Exception("FOREIGN KEY constraint failed")
        ),
    )

    with pytest.raises(IntegrityError, match="FOREIGN KEY"):
        await generate(session_factory, business_id, actors["staff"])

    assert build_items.call_count == 1

    async with session_factory() as fresh:
        assert await fresh.scalar(select(func.count(Invoice.id))) == 0


@pytest.mark.asyncio
async def test_generation_preconditions(session_factory, business, actors, week_of_charges):
    with pytest.raises(ValidationError):
        await generate(
            session_factory, business.id, actors["staff"],
            period_start=date(2026, 6, 7), period_end=date(2026, 6, 1)
        )

    with pytest.raises(ResourceNotFoundError):
        await generate(session_factory, 9999, actors["staff"])

    with pytest.raises(InsufficientPermissionsError):
        await generate(session_factory, business.id, actors["rider"])

    with pytest.raises(InsufficientPermissionsError):
        await generate(session_factory, business.id, actors["business"])

    with pytest.raises(NoBillableItemsError):
        await generate(
            session_factory, business.id, actors["staff"],
            period_start=date(2026, 7, 1), period_end=date(2026, 7, 31)
        )


# API

@pytest.mark.asyncio
async def test_invoice_endpoints(client, users, auth_headers, business, other_business, week_of_charges):
    payload = {
        "business_id": business.id,
        "start_date": "2026-06-01",
        "end_date": "2026-06-07",
        "notes": "June week 1",
    }

    proforma = await client.post("/v1/invoices/proforma", json=payload, headers=auth_headers(users["staff"]))
    assert proforma.status_code == 201
    assert proforma.json()["invoice_type"] == "PROFORMA"
    assert proforma.json()["status"] == "PROFORMA"

    response = await client.post(
        "/v1/invoices",
        json={**payload, "invoice_type": "INVOICE", "due_date": "2026-06-30"},
        headers=auth_headers(users["admin"])
    )
    assert response.status_code == 201
    invoice = response.json()
    assert Decimal(invoice["total_amount"]) == Decimal("4500")
    assert len(invoice["items"]) == 3
    assert sum(Decimal(item["amount"]) for item in invoice["items"]) == Decimal(invoice["total_amount"])
    assert invoice["notes"] == "June week 1"

    fetched = await client.get(f"/v1/invoices/{invoice['id']}", headers=auth_headers(users["business"]))
    assert fetched.status_code == 200
    assert fetched.json()["invoice_number"] == invoice["invoice_number"]

    missing = await client.get("/v1/invoices/9999", headers=auth_headers(users["staff"]))
    assert missing.status_code == 404

    again = await client.post("/v1/invoices", json=payload, headers=auth_headers(users["staff"]))
    assert again.status_code == 400
    assert again.json()["error_code"] == "ERR_INVOICE_001"

    rider = await client.post("/v1/invoices", json=payload, headers=auth_headers(users["rider"]))
    assert rider.status_code == 403


@pytest.mark.asyncio
async def test_business_cannot_view_foreign_invoice(
    client, db_session, users, auth_headers, other_business
):
    await add_delivery(db_session, other_business.id, users["staff"].id, "1200", utc(2026, 6, 2, 8))
    await db_session.commit()

    created = await client.post(
        "/v1/invoices",
        json={"business_id": other_business.id, "start_date": "2026-06-01", "end_date": "2026-06-07"},
        headers=auth_headers(users["staff"])
    )
    assert created.status_code == 201

    response = await client.get(f"/v1/invoices/{created.json()['id']}", headers=auth_headers(users["business"]))
    assert response.status_code == 403
