import os
from typing import Final, List


def _split_keys(raw: str) -> List[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


class _Config:
    def __init__(self) -> None:
        # Model credentials, rotated in order on quota exhaustion
        self.api_keys: List[str] = _split_keys(
            os.getenv("GEMINI_API_KEYS") or os.getenv("GEMINI_API_KEY") or ""
        )
        self.model_name: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

        # Retry behavior for overloaded upstream
        try:
            self.max_retries: int = int(os.getenv("MODEL_MAX_RETRIES", "3"))
        except ValueError:
            self.max_retries = 3
        try:
            self.backoff_initial_ms: float = float(os.getenv("MODEL_BACKOFF_INITIAL_MS", "5000"))
        except ValueError:
            self.backoff_initial_ms = 5000.0

        # Limits
        self.rate_limit: str = os.getenv("PLANNER_RATE_LIMIT", "10/minute")

        # Export
        self.brand_name: str = os.getenv("BRAND_NAME", "VoyageAI")
        self.export_dir: str = os.getenv("EXPORT_DIR", "exports")


CONFIG: Final[_Config] = _Config()
