from fastapi import APIRouter
from admin_gate.api.admin import session, verify

router = APIRouter()
router.include_router(verify.router, prefix="/verify", tags=["AdminVerify"])
router.include_router(session.router, prefix="/session", tags=["AdminSession"])
