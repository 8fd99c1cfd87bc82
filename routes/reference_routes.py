"""
Reference Routes - static data used by the lead calculators
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
import logging

from services.reference_service import ReferenceDataError, ReferenceService

logger = logging.getLogger(__name__)
router = APIRouter()


def get_reference_service() -> ReferenceService:
    return ReferenceService()


@router.get("/pay-tables")
def pay_tables(service: ReferenceService = Depends(get_reference_service)):
    try:
        data = service.load_pay_tables()
    except ReferenceDataError as e:
        logger.error(f"Pay tables unavailable: {e.__cause__ or e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    return {"ok": True, "version": data.get("version"), "updated": data.get("updated"), "data": data}


@router.get("/schools")
def schools(zip: str = "", service: ReferenceService = Depends(get_reference_service)):
    """Campuses and ratings for a ZIP code."""
    zip_code = zip.strip()
    if not zip_code:
        raise HTTPException(status_code=400, detail="zip required")
    try:
        return service.schools_by_zip(zip_code)
    except ReferenceDataError as e:
        logger.error(f"School ratings unavailable: {e.__cause__ or e}")
        return JSONResponse(
            status_code=500,
            content={"zip": zip_code, "campuses": [], "ratingNote": "", "source": "", "error": str(e)},
        )
