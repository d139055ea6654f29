"""Tests for CSV price-list import."""

import pytest
from sqlalchemy import select

from relaykit.domain.models import WorkspacePricingMaterial
from relaykit.services.pricing_import import PricingImportError, import_pricing_csv, parse_rows
from relaykit.services.pricing_service import PricingLookup


async def _rows(db, workspace_id):
    result = await db.execute(
        select(WorkspacePricingMaterial)
        .where(WorkspacePricingMaterial.workspace_id == workspace_id)
        .order_by(WorkspacePricingMaterial.description)
    )
    return list(result.scalars().all())


def test_parse_rows_strips_bom_and_blank_lines():
    headers, rows = parse_rows("\ufeffDescription,Unit_Cost\n\nPVC pipe,3.5\n , \n")
    assert headers == ["Description", "Unit_Cost"]
    assert rows == [["PVC pipe", "3.5"]]


async def test_import_inserts_rows_and_reports_skips(db_session, make_workspace):
    ws = await make_workspace()
    csv_text = (
        "description,unit,unit_cost\n"
        "PVC Pipe 10ft,each,12.50\n"
        ",each,3\n"
        "Teflon tape,roll,abc\n"
        "Wax ring,each,6\n"
    )

    report = await import_pricing_csv(db_session, ws.id, "plumbing", csv_text)

    assert report.to_dict() == {
        "inserted": 2,
        "skipped": 2,
        "errors": [
            {"row": 3, "error": "Missing description"},
            {"row": 4, "error": "Invalid unit_cost"},
        ],
    }
    rows = await _rows(db_session, ws.id)
    assert [(r.description, r.normalized_key, r.unit, r.unit_cost, r.source) for r in rows] == [
        ("PVC Pipe 10ft", "pvc pipe 10ft", "each", 12.5, "upload"),
        ("Wax ring", "wax ring", "each", 6.0, "upload"),
    ]
    assert all(r.customer_id is None and r.trade == "plumbing" for r in rows)


async def test_import_accepts_header_aliases_and_normalized_key(db_session, make_workspace):
    ws = await make_workspace()
    csv_text = "item_key,price,normalized_key\npex_half_inch,0.89,pex tubing\n"

    report = await import_pricing_csv(db_session, ws.id, "plumbing", csv_text)

    assert report.inserted == 1
    [row] = await _rows(db_session, ws.id)
    assert row.description == "pex_half_inch"
    assert row.normalized_key == "pex tubing"
    assert row.unit is None


async def test_import_customer_rows(db_session, make_workspace, make_customer):
    ws = await make_workspace()
    customer = await make_customer(ws.id)

    await import_pricing_csv(
        db_session, ws.id, "plumbing", "description,unit_cost\nPVC pipe,4\n", default_customer_id=customer.id
    )
    await import_pricing_csv(
        db_session, ws.id, "plumbing", f"description,unit_cost,customer_id\nWax ring,5,{customer.id}\n"
    )

    rows = await _rows(db_session, ws.id)
    assert {r.customer_id for r in rows} == {customer.id}


async def test_import_rejects_other_workspaces_customer(db_session, make_workspace, make_customer):
    ws = await make_workspace()
    other = await make_workspace()
    foreign = await make_customer(other.id)

    with pytest.raises(PricingImportError, match="Invalid customer_id"):
        await import_pricing_csv(
            db_session, ws.id, "plumbing", "description,unit_cost\nPVC pipe,4\n", default_customer_id=foreign.id
        )
    assert await _rows(db_session, ws.id) == []


@pytest.mark.parametrize(
    "trade, csv_text, message",
    [
        ("roofing", "description,unit_cost\nx,1\n", "Invalid trade"),
        ("plumbing", "", "missing headers"),
        ("plumbing", "name,amount\nx,1\n", "must include description"),
    ],
)
async def test_import_rejects_unusable_uploads(db_session, make_workspace, trade, csv_text, message):
    ws = await make_workspace()
    with pytest.raises(PricingImportError, match=message):
        await import_pricing_csv(db_session, ws.id, trade, csv_text)


async def test_imported_rows_feed_workspace_pricing(session_factory, db_session, make_workspace):
    ws = await make_workspace()
    await import_pricing_csv(db_session, ws.id, "plumbing", "description,unit_cost\nPVC pipe,4\nPVC pipe,6\nPVC pipe,20\n")

    lookup = PricingLookup.for_job(session_factory, ws.id, "plumbing", None)
    resolution = await lookup.resolve("pvc pipe")
    assert resolution.cost == 6.0
    assert resolution.source.value == "workspace"
