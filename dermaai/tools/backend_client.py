from __future__ import annotations

import logging
from typing import Any, Iterator
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from dermaai.config import STANDARD_DOMAIN, settings
from dermaai.models import (
    DiagnosisRequest,
    DiagnosisResponse,
    Disease,
    DiseasePage,
    Domain,
)

logger = logging.getLogger(__name__)


class BackendError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("detail"):
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return f"HTTP error {resp.status_code}"


class BackendClient:
    """
    Read-only client for the dermatology REST backend plus the diagnosis call.

    Every failure (transport, non-2xx status, unexpected body) surfaces as
    BackendError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_prefix: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"ngrok-skip-browser-warning": "1"}
        token = token if token is not None else settings.api_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.api_prefix = (api_prefix if api_prefix is not None else settings.api_prefix).rstrip("/")
        self._client = httpx.Client(
            base_url=base_url or settings.api_base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
        )

    def __enter__(self) -> "BackendClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.api_prefix}{path}"
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise BackendError(f"Không thể kết nối tới máy chủ: {e}") from e

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.warning("%s %s -> %s: %s", method, url, resp.status_code, detail)
            raise BackendError(detail, status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {url}", status_code=resp.status_code) from e

    # ----------------------------
    # Domains
    # ----------------------------

    def get_domains(self, skip: int = 0, limit: int = 100) -> list[Domain]:
        data = self._request("GET", "/domains/", params={"skip": skip, "limit": limit})
        if not isinstance(data, list):
            raise BackendError("Unexpected domains payload")
        domains: list[Domain] = []
        for item in data:
            try:
                domains.append(Domain.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed domain: %r", item)
        return domains

    def get_standard_domain(self) -> Domain | None:
        for d in self.get_domains():
            if d.domain == STANDARD_DOMAIN:
                return d
        return None

    # ----------------------------
    # Diseases
    # ----------------------------

    def get_diseases_by_domain(
        self,
        domain_id: str,
        skip: int = 0,
        limit: int = 100,
        active_only: bool = True,
    ) -> DiseasePage:
        data = self._request(
            "GET",
            f"/diseases/domain/{domain_id}",
            params={"skip": skip, "limit": limit, "active_only": str(active_only).lower()},
        )
        try:
            return DiseasePage.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"Unexpected disease page payload: {e}") from e

    def iter_domain_diseases(
        self,
        domain_id: str,
        page_size: int | None = None,
    ) -> Iterator[Disease]:
        limit = page_size or settings.disease_page_size
        skip = 0
        while True:
            page = self.get_diseases_by_domain(domain_id, skip=skip, limit=limit)
            yield from page.items
            if not page.pagination.has_next or not page.items:
                return
            skip += len(page.items)

    def get_disease(self, disease_id: str) -> Disease:
        data = self._request("GET", f"/diseases/{disease_id}")
        try:
            return Disease.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"Unexpected disease payload: {e}") from e

    def search_diseases(self, term: str) -> list[Disease]:
        data = self._request("GET", f"/diseases/search/{quote(term, safe='')}")
        if not isinstance(data, list):
            raise BackendError("Unexpected search payload")
        try:
            return [Disease.model_validate(item) for item in data]
        except ValidationError as e:
            raise BackendError(f"Unexpected search payload: {e}") from e

    # ----------------------------
    # Diagnosis
    # ----------------------------

    def diagnose(self, request: DiagnosisRequest) -> DiagnosisResponse:
        data = self._request(
            "POST",
            "/diagnosis",
            json=request.model_dump(exclude_none=True),
        )
        if not isinstance(data, dict):
            raise BackendError("Unexpected diagnosis payload")
        try:
            return DiagnosisResponse.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"Unexpected diagnosis payload: {e}") from e
