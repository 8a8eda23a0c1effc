"""GET /api/license?key=...: immediate license validation for the extension UI."""
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ronchon.api.deps import get_licenses
from ronchon.features.licenses.service import LicenseRegistry

router = APIRouter(prefix="/api", tags=["license"])


@router.get("/license")
def check_license(key: Optional[str] = None, licenses: LicenseRegistry = Depends(get_licenses)):
    if not (key or "").strip():
        return JSONResponse(status_code=400, content={"valid": False, "error": "missing_key"})
    return {"valid": licenses.is_valid(key)}
