from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

logger = logging.getLogger(__name__)


# ----------------------------
# Disease cache
# ----------------------------

class CachedDiseaseEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str


class CacheSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    diseases: list[CachedDiseaseEntry] = Field(default_factory=list)
    timestamp: int  # epoch ms
    expiry_time: int = Field(alias="expiryTime")  # duration ms


class CacheInfo(BaseModel):
    size: int
    is_valid: bool
    has_data: bool


# ----------------------------
# Diagnosis labels
# ----------------------------

class DiseaseScore(BaseModel):
    name: str
    score: float


class LabelObject(BaseModel):
    """`{"name": ..., "score": ...}` as sent by newer backends."""

    name: str
    score: float = Field(validation_alias=AliasChoices("score", "probability"))


LabelPair = tuple[str, float]

RawLabel = Union[LabelObject, LabelPair]

_raw_label_adapter: TypeAdapter[RawLabel] = TypeAdapter(RawLabel)


def decode_labels(raw: Any) -> list[DiseaseScore]:
    """
    Decode backend labels into DiseaseScore, highest score first.

    Each entry may be an object or a `[name, score]` pair. Entries matching
    neither shape are dropped.
    """
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        logger.warning("Ignoring labels of unexpected type %s", type(raw).__name__)
        return []

    scores: list[DiseaseScore] = []
    for item in raw:
        if isinstance(item, DiseaseScore):
            scores.append(item)
            continue
        try:
            decoded = _raw_label_adapter.validate_python(item)
        except ValidationError:
            logger.warning("Dropping malformed label entry: %r", item)
            continue

        if isinstance(decoded, LabelObject):
            scores.append(DiseaseScore(name=decoded.name, score=decoded.score))
        else:
            name, score = decoded
            scores.append(DiseaseScore(name=name, score=score))

    return sorted(scores, key=lambda s: s.score, reverse=True)


# ----------------------------
# Conversation
# ----------------------------

class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime | None = None
    is_error: bool = False


class DiagnosisResult(BaseModel):
    """Last known diagnosis state of a session, persisted after every turn."""

    model_config = ConfigDict(extra="allow")

    labels: list[DiseaseScore] = Field(default_factory=list)
    response: Any = ""
    chat_history: Any = None
    show: bool | None = None
    has_initial_user_text: bool = Field(
        False,
        validation_alias=AliasChoices("has_initial_user_text", "hasInitialUserText"),
    )
    initial_user_text: str = Field(
        "",
        validation_alias=AliasChoices("initial_user_text", "initialUserText"),
    )

    @field_validator("labels", mode="before")
    @classmethod
    def _decode_labels(cls, v: Any) -> list[DiseaseScore]:
        return decode_labels(v)


class DiagnosisRequest(BaseModel):
    image_base64: str | None = None
    text: str | None = None
    chat_history: Any = None


class DiagnosisResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    labels: list[DiseaseScore] = Field(default_factory=list)
    response: Any = ""
    chat_history: Any = None
    show: bool | None = None

    @field_validator("labels", mode="before")
    @classmethod
    def _decode_labels(cls, v: Any) -> list[DiseaseScore]:
        return decode_labels(v)


class ResolvedDisease(BaseModel):
    name: str
    score: float
    percentage: int
    label: str
    disease_id: str | None = None
    href: str | None = None
    most_likely: bool = False


# ----------------------------
# Backend resources
# ----------------------------

class Domain(BaseModel):
    id: str
    domain: str
    description: str | None = None


class Disease(BaseModel):
    id: str
    label: str
    domain_id: str | None = None
    description: str | None = None
    included_in_diagnosis: bool = True
    article_id: str | None = None


class Pagination(BaseModel):
    total: int = 0
    page: int = 1
    size: int = 0
    pages: int = 0
    has_next: bool = False
    has_prev: bool = False


class DiseasePage(BaseModel):
    items: list[Disease] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


# ----------------------------
# Web API
# ----------------------------

class DiagnosisSeedRequest(BaseModel):
    result: DiagnosisResult
    image_data_url: str | None = None


class ChatRequest(BaseModel):
    message: str

    @field_validator("message")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message must not be empty")
        return v


class ConversationView(BaseModel):
    session_id: str
    state: Literal["uninitialized", "empty", "ready", "sending"]
    messages: list[ConversationMessage] = Field(default_factory=list)
    diseases: list[ResolvedDisease] = Field(default_factory=list)
    show: bool | None = None
