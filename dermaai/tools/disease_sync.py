from __future__ import annotations

import logging

from dermaai.cache.disease_cache import DiseaseLookupCache
from dermaai.config import STANDARD_DOMAIN
from dermaai.tools.backend_client import BackendClient, BackendError

logger = logging.getLogger(__name__)


def refresh_disease_cache(cache: DiseaseLookupCache, backend: BackendClient) -> int:
    """
    Refetch the STANDARD domain vocabulary and replace the cache with it.
    Raises BackendError when the backend cannot be reached.
    """
    domain = backend.get_standard_domain()
    if domain is None:
        raise BackendError(f"{STANDARD_DOMAIN} domain not found", status_code=404)

    entries = [
        {"id": d.id, "label": d.label}
        for d in backend.iter_domain_diseases(domain.id)
    ]
    cache.update_cache(entries)
    return len(entries)


def ensure_disease_cache(cache: DiseaseLookupCache, backend: BackendClient) -> bool:
    if cache.has_data():
        return True

    try:
        refresh_disease_cache(cache, backend)
    except BackendError as e:
        # unresolved labels render as plain text
        logger.warning("Could not load standard diseases: %s", e)
        return False

    return cache.has_data()
