"""
Mastery endpoints - the caller's per-topic mastery map.
"""

from fastapi import APIRouter

from adaptive_assessment.api.deps import AppSettings, CurrentActor, DbSession
from adaptive_assessment.engines.mastery import MasteryTracker
from adaptive_assessment.schemas.mastery import MasteryProfileResponse, MasteryRecordSchema

router = APIRouter()


@router.get("", response_model=MasteryProfileResponse)
async def get_mastery(
    actor: CurrentActor,
    db: DbSession,
    settings: AppSettings,
):
    """Mastery for every topic the caller has attempted."""
    tracker = MasteryTracker(db, expected_ms=settings.expected_answer_ms)
    profile = await tracker.get_profile(actor.id)
    return MasteryProfileResponse(
        user_id=actor.id,
        topics={
            topic: MasteryRecordSchema(**record.model_dump())
            for topic, record in profile.items()
        },
    )
