"""
API v1 routes.
"""

from fastapi import APIRouter

from adaptive_assessment.api.v1 import assessment, items, mastery, proctor
from adaptive_assessment.schemas.common import ErrorResponse

router = APIRouter(
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)

router.include_router(assessment.router, prefix="/assessment", tags=["Assessment"])
router.include_router(proctor.router, prefix="/proctor", tags=["Proctoring"])
router.include_router(items.router, prefix="/items", tags=["Item Bank"])
router.include_router(mastery.router, prefix="/mastery", tags=["Mastery"])
