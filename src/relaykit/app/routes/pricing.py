"""Price list CSV import."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.routes.deps import MANAGER_ROLES, Member, require_role
from relaykit.infra.database import get_db
from relaykit.services.pricing_import import PricingImportError, import_pricing_csv

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pricing-materials", tags=["pricing"])


@router.post("/import")
async def import_pricing_materials(
    trade: str = Form(...),
    file: UploadFile = File(...),
    customer_id: Optional[str] = Form(None),
    member: Member = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail={"error": "CSV must be UTF-8 encoded"})

    try:
        report = await import_pricing_csv(
            db, member.workspace_id, trade, text, default_customer_id=customer_id or None
        )
    except PricingImportError as exc:
        raise HTTPException(status_code=400, detail={"error": str(exc)})
    return report.to_dict()
