from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from pydantic import ValidationError

from dermaai.agents.labels import display_text, resolve_diseases
from dermaai.cache.disease_cache import DiseaseLookupCache
from dermaai.config import DIAGNOSIS_RESULT_KEY, IMAGE_PREVIEW_KEY, settings
from dermaai.memory.kv_store import KeyValueStore, StorageError
from dermaai.models import (
    ConversationMessage,
    DiagnosisRequest,
    DiagnosisResult,
    ResolvedDisease,
)
from dermaai.tools.backend_client import BackendClient, BackendError
from dermaai.tools.disease_sync import ensure_disease_cache

logger = logging.getLogger(__name__)


GREETING = (
    "Xin chào! Tôi là trợ lý chẩn đoán da liễu. "
    "Bạn có thể đặt thêm câu hỏi về kết quả chẩn đoán của mình."
)
EMPTY_REPLY = "(Không có phản hồi)"
ERROR_TEMPLATE = "Xin lỗi, đã xảy ra lỗi khi xử lý câu hỏi của bạn: {error}. Vui lòng thử lại."


class ConversationState(str, Enum):
    UNINITIALIZED = "uninitialized"
    EMPTY = "empty"
    READY = "ready"
    SENDING = "sending"


class ConversationNotReady(RuntimeError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _strip_data_url(value: str) -> str:
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


class DiagnosisConversation:
    """
    Chat transcript of one diagnosis session.

    Only the DiagnosisResult is persisted; the transcript is rebuilt from it
    on load and grows in memory afterwards.
    """

    def __init__(
        self,
        store: KeyValueStore,
        backend: BackendClient,
        cache: DiseaseLookupCache,
        *,
        fallback_history_turns: int | None = None,
        fallback_top_diseases: int | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.cache = cache
        self.fallback_history_turns = (
            settings.fallback_history_turns if fallback_history_turns is None else fallback_history_turns
        )
        self.fallback_top_diseases = (
            settings.fallback_top_diseases if fallback_top_diseases is None else fallback_top_diseases
        )

        self.state = ConversationState.UNINITIALIZED
        self.result: DiagnosisResult | None = None
        self._messages: list[ConversationMessage] = []
        self._closed = False

    @property
    def messages(self) -> list[ConversationMessage]:
        return list(self._messages)

    def _append(self, role: str, content: str, is_error: bool = False) -> ConversationMessage:
        msg = ConversationMessage(role=role, content=content, timestamp=_now(), is_error=is_error)
        self._messages.append(msg)
        return msg

    # ----------------------------
    # Loading
    # ----------------------------

    def load(self) -> ConversationState:
        ensure_disease_cache(self.cache, self.backend)

        try:
            raw = self.store.get(DIAGNOSIS_RESULT_KEY)
        except StorageError as e:
            logger.error("Cannot read diagnosis result: %s", e)
            raw = None

        if not raw:
            self._messages = []
            self.result = None
            self.state = ConversationState.EMPTY
            return self.state

        try:
            result = DiagnosisResult.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Stored diagnosis result is malformed: %s", e)
            self._messages = []
            self.result = None
            self.state = ConversationState.EMPTY
            return self.state

        self.seed(result)
        return self.state

    def seed(self, result: DiagnosisResult) -> None:
        self.result = result
        self._messages = []

        if result.has_initial_user_text and result.initial_user_text:
            self._append("user", result.initial_user_text)

        initial = display_text(result.response)
        if initial:
            self._append("assistant", initial)

        if not self._messages:
            self._append("assistant", GREETING)

        self.state = ConversationState.READY

    def start(self, result: DiagnosisResult, image_data_url: str | None = None) -> None:
        """Store a fresh diagnosis result (and its image) and seed from it."""
        if image_data_url:
            try:
                self.store.set(IMAGE_PREVIEW_KEY, image_data_url)
            except StorageError as e:
                logger.warning("Image preview not stored, follow-ups go without it: %s", e)
        self._persist(result)
        ensure_disease_cache(self.cache, self.backend)
        self.seed(result)

    # ----------------------------
    # Follow-up round trip
    # ----------------------------

    def _image_base64(self) -> str | None:
        try:
            value = self.store.get(IMAGE_PREVIEW_KEY)
        except StorageError as e:
            logger.warning("Cannot read image preview: %s", e)
            return None
        return _strip_data_url(value) if value else None

    def send_follow_up(self, text: str) -> ConversationMessage | None:
        """
        Send a follow-up question and append the reply.

        Backend failures become an assistant error message. Returns None when
        the conversation was closed while the request was in flight.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("message must not be empty")
        if self.result is None or self.state not in (ConversationState.READY, ConversationState.SENDING):
            raise ConversationNotReady("No diagnosis loaded for this conversation")

        self._append("user", text)
        self.state = ConversationState.SENDING

        request = DiagnosisRequest(
            text=text,
            chat_history=self.result.chat_history,
            image_base64=self._image_base64(),
        )

        try:
            response = self.backend.diagnose(request)
        except BackendError as e:
            if self._closed:
                return None
            logger.warning("Follow-up failed: %s", e)
            self.state = ConversationState.READY
            return self._append("assistant", ERROR_TEMPLATE.format(error=e), is_error=True)

        if self._closed:
            logger.debug("Dropping reply for closed conversation")
            return None

        reply = display_text(response.response) or EMPTY_REPLY
        msg = self._append("assistant", reply)

        update: dict = {"response": reply, "chat_history": response.chat_history}
        if response.labels:
            update["labels"] = response.labels
        if response.show is not None:
            update["show"] = response.show
        self.result = self.result.model_copy(update=update)

        self._persist(self.result)
        self.state = ConversationState.READY
        return msg

    # ----------------------------
    # Persistence
    # ----------------------------

    def _reduced(self, result: DiagnosisResult) -> DiagnosisResult:
        history = result.chat_history
        if isinstance(history, list):
            n = self.fallback_history_turns
            history = history[-n:] if n > 0 else []
        return DiagnosisResult(
            labels=result.labels[: self.fallback_top_diseases],
            response=result.response,
            chat_history=history,
            show=result.show,
            has_initial_user_text=result.has_initial_user_text,
            initial_user_text=result.initial_user_text,
        )

    def _persist(self, result: DiagnosisResult) -> bool:
        try:
            self.store.set(DIAGNOSIS_RESULT_KEY, result.model_dump_json())
            return True
        except (StorageError, ValueError) as e:
            logger.warning("Full diagnosis result not saved, trying reduced payload: %s", e)

        try:
            self.store.set(DIAGNOSIS_RESULT_KEY, self._reduced(result).model_dump_json())
            return True
        except (StorageError, ValueError) as e:
            logger.error("Diagnosis result not saved: %s", e)
            return False

    # ----------------------------
    # Rendering
    # ----------------------------

    def diseases(self) -> list[ResolvedDisease]:
        if self.result is None:
            return []
        return resolve_diseases(self.result.labels, self.cache)

    def close(self) -> None:
        self._closed = True

    def clear(self) -> None:
        """Forget the stored diagnosis and image for this session."""
        for key in (DIAGNOSIS_RESULT_KEY, IMAGE_PREVIEW_KEY):
            try:
                self.store.delete(key)
            except StorageError as e:
                logger.warning("Cannot remove %s: %s", key, e)
        self.close()
