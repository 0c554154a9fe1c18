from __future__ import annotations

from typing import Any, Iterable

from dermaai.cache.disease_cache import DiseaseLookupCache
from dermaai.models import DiseaseScore, ResolvedDisease


NESTED_PLACEHOLDER = "[Dữ liệu phức tạp]"


def display_text(value: Any) -> str:
    """Text for a backend value shown in the chat. Objects and arrays are never dumped."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return str(value)
    return NESTED_PLACEHOLDER


def disease_href(disease_id: str) -> str:
    return f"/diseases/{disease_id}"


def resolve_diseases(
    labels: Iterable[DiseaseScore],
    cache: DiseaseLookupCache,
) -> list[ResolvedDisease]:
    """
    Attach canonical records to model labels, keeping their order.
    The first entry is the most likely one.
    """
    resolved: list[ResolvedDisease] = []
    for i, item in enumerate(labels):
        entry = cache.get_disease_info(item.name)
        resolved.append(
            ResolvedDisease(
                name=item.name,
                score=item.score,
                percentage=round(item.score * 100),
                label=entry.label if entry else item.name,
                disease_id=entry.id if entry else None,
                href=disease_href(entry.id) if entry else None,
                most_likely=(i == 0),
            )
        )
    return resolved
