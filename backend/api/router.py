from __future__ import annotations

from fastapi import APIRouter, Depends

from api.deps import require_staff
from api.routes import auth, room_codes


api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# Room code administration is staff/admin only.
_protected = [Depends(require_staff)]
api_router.include_router(room_codes.router, prefix="/room-codes", tags=["room-codes"], dependencies=_protected)
