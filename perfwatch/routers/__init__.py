# API routers for perfwatch

from fastapi import APIRouter

from .performance import router as performance_router

router = APIRouter()
router.include_router(performance_router)

__all__ = ['router', 'performance_router']
