"""
Item bank authoring endpoints (instructor/admin).
"""

import uuid

from fastapi import APIRouter, status

from adaptive_assessment.api.deps import InstructorActor, ItemBank
from adaptive_assessment.engines.item_bank import ItemSpec
from adaptive_assessment.kernel.models.item import Item
from adaptive_assessment.schemas.items import ItemCreateRequest, ItemResponse, ItemUpdateRequest

router = APIRouter()


def _enum_val(e) -> str:
    return e.value if hasattr(e, "value") else str(e)


def _item_response(item: Item) -> ItemResponse:
    return ItemResponse(
        id=item.id,
        item_type=_enum_val(item.item_type),
        question=item.question,
        choices=list(item.choices or []),
        answer=item.answer,
        grading_method=_enum_val(item.grading_method),
        difficulty=item.difficulty,
        bloom=_enum_val(item.bloom) if item.bloom else None,
        topics=list(item.topics or []),
        skills=list(item.skills or []),
        hints=list(item.hints or []),
        explanation=item.explanation or "",
        ai_generated=item.ai_generated,
        batch_id=item.batch_id,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


@router.post("", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    request: ItemCreateRequest,
    actor: InstructorActor,
    bank: ItemBank,
):
    item = await bank.create_item(ItemSpec(**request.model_dump()), actor.id)
    return _item_response(item)


@router.get("/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: uuid.UUID,
    _: InstructorActor,
    bank: ItemBank,
):
    return _item_response(await bank.get_item(item_id))


@router.patch("/{item_id}", response_model=ItemResponse)
async def update_item(
    item_id: uuid.UUID,
    request: ItemUpdateRequest,
    actor: InstructorActor,
    bank: ItemBank,
):
    """Edit an item. Items that already have graded attempts are locked (409)."""
    changes = request.model_dump(exclude_unset=True)
    item = await bank.update_item(item_id, changes, actor.id)
    return _item_response(item)
