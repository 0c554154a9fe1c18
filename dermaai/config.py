import os


STANDARD_DOMAIN = "STANDARD"

DISEASE_CACHE_KEY = "standard-diseases-cache"
DISEASE_CACHE_DURATION_MS = 24 * 60 * 60 * 1000  # 24 hours

DIAGNOSIS_RESULT_KEY = "diagnosisResult"
IMAGE_PREVIEW_KEY = "imagePreview"


class Settings:
    api_base_url: str = os.getenv("DERMAAI_API_BASE_URL", "http://localhost:8000")
    api_prefix: str = os.getenv("DERMAAI_API_PREFIX", "/api")
    api_token: str | None = os.getenv("DERMAAI_API_TOKEN")
    request_timeout: float = float(os.getenv("DERMAAI_REQUEST_TIMEOUT", "60"))

    host: str = os.getenv("DERMAAI_HOST", "127.0.0.1")
    port: int = int(os.getenv("DERMAAI_PORT", "8080"))

    storage_dir: str = os.getenv("DERMAAI_STORAGE_DIR", "data/storage")
    max_value_bytes: int = int(os.getenv("DERMAAI_MAX_VALUE_BYTES", str(5 * 1024 * 1024)))

    disease_page_size: int = int(os.getenv("DERMAAI_DISEASE_PAGE_SIZE", "100"))

    # Reduced save used when the full diagnosis result cannot be persisted
    fallback_history_turns: int = int(os.getenv("DERMAAI_FALLBACK_HISTORY_TURNS", "10"))
    fallback_top_diseases: int = int(os.getenv("DERMAAI_FALLBACK_TOP_DISEASES", "3"))


settings = Settings()
