"""
Submitted answer shapes, one variant per item type.

Raw answers arrive as loosely-typed JSON; `parse_answer` turns them into the
variant for the item's type or raises AnswerValidationError before anything
is graded or stored.
"""

from typing import Annotated, Any, List, Literal, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from adaptive_assessment.exceptions import AnswerValidationError
from adaptive_assessment.kernel.models.item import ItemType


def _as_text(value: Any) -> Any:
    """JSON numbers are acceptable answers for text items ("42")."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _TextAnswer(BaseModel):
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> Any:
        return _as_text(v)

    @field_validator("value")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("answer must not be empty")
        return v


class McqAnswer(_TextAnswer):
    item_type: Literal[ItemType.MCQ] = ItemType.MCQ


class FillBlankAnswer(_TextAnswer):
    item_type: Literal[ItemType.FILL_BLANK] = ItemType.FILL_BLANK


class ShortAnswer(_TextAnswer):
    item_type: Literal[ItemType.SHORT_ANSWER] = ItemType.SHORT_ANSWER


class MatchAnswer(BaseModel):
    item_type: Literal[ItemType.MATCH] = ItemType.MATCH
    pairs: List[Tuple[str, str]]

    @field_validator("pairs", mode="before")
    @classmethod
    def _coerce_pairs(cls, v: Any) -> Any:
        if isinstance(v, dict):
            v = list(v.items())
        if isinstance(v, list):
            return [
                [_as_text(part) for part in pair] if isinstance(pair, (list, tuple)) else pair
                for pair in v
            ]
        return v

    @field_validator("pairs")
    @classmethod
    def _not_empty(cls, v: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
        if not v:
            raise ValueError("at least one pair is required")
        return v


class ReorderAnswer(BaseModel):
    item_type: Literal[ItemType.REORDER] = ItemType.REORDER
    sequence: List[str]

    @field_validator("sequence", mode="before")
    @classmethod
    def _coerce_sequence(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [_as_text(part) for part in v]
        return v

    @field_validator("sequence")
    @classmethod
    def _not_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("sequence must not be empty")
        return v


SubmittedAnswer = Annotated[
    Union[McqAnswer, FillBlankAnswer, ShortAnswer, MatchAnswer, ReorderAnswer],
    Field(discriminator="item_type"),
]

_answer_adapter: TypeAdapter[SubmittedAnswer] = TypeAdapter(SubmittedAnswer)

_PAYLOAD_KEY = {
    ItemType.MCQ: "value",
    ItemType.FILL_BLANK: "value",
    ItemType.SHORT_ANSWER: "value",
    ItemType.MATCH: "pairs",
    ItemType.REORDER: "sequence",
}


def parse_answer(item_type: ItemType | str, raw: Any) -> SubmittedAnswer:
    """
    Validate a raw answer against the shape required by `item_type`.

    Raises:
        AnswerValidationError: missing answer or wrong shape
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise AnswerValidationError()
    try:
        kind = ItemType(item_type)
    except ValueError:
        raise AnswerValidationError(f"Unsupported item type: {item_type}")

    try:
        return _answer_adapter.validate_python({"item_type": kind, _PAYLOAD_KEY[kind]: raw})
    except ValidationError as exc:
        first = exc.errors()[0]
        raise AnswerValidationError(
            f"Invalid answer for {kind.value} item: {first['msg']}",
            errors=[e["msg"] for e in exc.errors()],
        )


def answer_payload(answer: SubmittedAnswer) -> Any:
    """The JSON value stored as Attempt.user_answer."""
    if isinstance(answer, MatchAnswer):
        return [list(pair) for pair in answer.pairs]
    if isinstance(answer, ReorderAnswer):
        return list(answer.sequence)
    return answer.value
