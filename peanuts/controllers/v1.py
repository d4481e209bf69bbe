from fastapi import APIRouter

from . import photos

router = APIRouter(prefix="/api/v1")
router.include_router(photos.router)
