from __future__ import annotations

from typing import Any

import pytest

from dermaai.cache.disease_cache import DiseaseLookupCache
from dermaai.memory.kv_store import MemoryStore
from dermaai.models import DiagnosisRequest, DiagnosisResponse, Disease, Domain
from dermaai.tools.backend_client import BackendError


HOUR_MS = 60 * 60 * 1000


class FakeClock:
    def __init__(self, now_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeBackend:
    """Stands in for BackendClient. `responses` are dicts or exceptions, consumed in order."""

    def __init__(
        self,
        diseases: list[dict[str, str]] | None = None,
        responses: list[Any] | None = None,
        domain_error: Exception | None = None,
    ) -> None:
        self.diseases = diseases or []
        self.responses = list(responses or [])
        self.domain_error = domain_error
        self.requests: list[DiagnosisRequest] = []
        self.domain_calls = 0
        self.closed = False

    def get_standard_domain(self) -> Domain | None:
        self.domain_calls += 1
        if self.domain_error is not None:
            raise self.domain_error
        return Domain(id="std-1", domain="STANDARD")

    def iter_domain_diseases(self, domain_id: str, page_size: int | None = None):
        return iter([Disease(**d) for d in self.diseases])

    def diagnose(self, request: DiagnosisRequest) -> DiagnosisResponse:
        self.requests.append(request)
        if not self.responses:
            raise BackendError("no response queued", status_code=500)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return DiagnosisResponse.model_validate(item)

    def close(self) -> None:
        self.closed = True


STANDARD_DISEASES = [
    {"id": "d-eczema", "label": "Viêm da cơ địa"},
    {"id": "d-psoriasis", "label": "Vảy nến"},
    {"id": "d-contact", "label": "Viêm da tiếp xúc"},
]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(store: MemoryStore, clock: FakeClock) -> DiseaseLookupCache:
    return DiseaseLookupCache(store, clock=clock)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(diseases=STANDARD_DISEASES)
