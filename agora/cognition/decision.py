"""Decision parsing — model output to a tagged, validated decision."""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union

import orjson
from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError

from agora.exceptions import DecisionParseError
from agora.types import ActionKind, MemoryType

NO_ACTION = "NO_ACTION"


class _DecisionBase(BaseModel):
    reason: str = ""
    internal_monologue: str = ""
    behavior_flags: list[str] = Field(default_factory=list)
    memory: str | None = None

    @property
    def kind(self) -> ActionKind | None:
        return None


class NoAction(_DecisionBase):
    action: Literal["NO_ACTION"]


class PostArguments(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    community: str = "general"


class CommentArguments(BaseModel):
    post_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class CreatePost(_DecisionBase):
    action: Literal["create_post"]
    arguments: PostArguments = Field(
        validation_alias=AliasChoices("arguments", "tool_arguments"),
    )

    @property
    def kind(self) -> ActionKind:
        return ActionKind.CREATE_POST


class CreateComment(_DecisionBase):
    action: Literal["create_comment"]
    arguments: CommentArguments = Field(
        validation_alias=AliasChoices("arguments", "tool_arguments"),
    )

    @property
    def kind(self) -> ActionKind:
        return ActionKind.CREATE_COMMENT


Decision = Annotated[Union[NoAction, CreatePost, CreateComment], Field(discriminator="action")]
ActionDecision = Union[CreatePost, CreateComment]

_decision_adapter: TypeAdapter[Any] = TypeAdapter(Decision)


def _normalize(raw: dict[str, Any]) -> dict[str, Any]:
    data = dict(raw)
    action = data.get("action")
    if isinstance(action, str):
        action = action.strip()
        data["action"] = NO_ACTION if action.upper() == NO_ACTION else action.lower()

    # Posts may name their community at the top level
    args = data.get("arguments", data.get("tool_arguments"))
    if data.get("action") == "create_post" and isinstance(args, dict):
        community = args.get("community") or data.get("community")
        if community:
            args = {**args, "community": str(community).strip().lstrip("/").removeprefix("c/")}
            data.pop("tool_arguments", None)
            data["arguments"] = args

    if data.get("behavior_flags") is None:
        data.pop("behavior_flags", None)
    return data


def parse_decision(content: str) -> NoAction | CreatePost | CreateComment:
    """Parse a model's JSON decision. No repair is attempted."""
    if not content or not content.strip():
        raise DecisionParseError("Model returned an empty response")
    try:
        raw = orjson.loads(content.strip())
    except orjson.JSONDecodeError as e:
        raise DecisionParseError(f"Model output is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise DecisionParseError("Model output is not a JSON object")

    try:
        return _decision_adapter.validate_python(_normalize(raw))
    except ValidationError as e:
        raise DecisionParseError(f"Model output failed validation: {e}") from e


# ── Content hygiene ──────────────────────────────────────────────

_URL_RE = re.compile(r"https?://[^\s)\]>\"']+")


def strip_surplus_links(text: str, max_links: int) -> str:
    """Keep the first ``max_links`` URLs and drop the rest."""
    seen = 0

    def _keep_or_drop(match: re.Match[str]) -> str:
        nonlocal seen
        seen += 1
        return match.group(0) if seen <= max_links else ""

    stripped = _URL_RE.sub(_keep_or_drop, text)
    if seen <= max_links:
        return text
    return re.sub(r"[ \t]{2,}", " ", stripped).strip()


# ── Memory typing ────────────────────────────────────────────────

_PREFIX_RE = re.compile(r"^\[(position|promise|open_question|insight)\]\s*", re.IGNORECASE)
_POSITION_RE = re.compile(
    r"\b(i believe|my position|i think|i argue|i maintain|i stand by|i contend)\b"
)
_PROMISE_RE = re.compile(r"\b(i will|i promise|i'll|i commit|i pledge|i intend to|i shall)\b")
_QUESTION_RE = re.compile(r"\?|\b(wondering|curious|question|unclear|what if|how does|why do)\b")


def classify_memory(text: str) -> tuple[MemoryType, str]:
    """Return the memory type and the text with any type tag removed."""
    text = text.strip()
    match = _PREFIX_RE.match(text)
    if match:
        return MemoryType(match.group(1).lower()), text[match.end():].strip()

    lower = text.lower()
    if _POSITION_RE.search(lower):
        return MemoryType.POSITION, text
    if _PROMISE_RE.search(lower):
        return MemoryType.PROMISE, text
    if _QUESTION_RE.search(lower):
        return MemoryType.OPEN_QUESTION, text
    return MemoryType.INSIGHT, text
