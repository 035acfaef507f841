# app/modules/router.py
from fastapi import APIRouter
from app.modules.quotechat.api.router import v1 as quotechat_router

router = APIRouter()
router.include_router(quotechat_router)
