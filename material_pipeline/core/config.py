from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

# Always load .env from the repo root (stable, regardless of CWD)
BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=BASE_DIR / ".env", override=False)


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv(
        "DATABASE_URL",
        "postgresql+psycopg://mp:mp@localhost:5433/mp",
    )
    env: str = os.getenv("ENV", "local")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Job queue
    pipeline_version: str = os.getenv("MATERIAL_PIPELINE_VERSION", "v1")
    dispatch_batch_size: int = int(os.getenv("JOB_DISPATCH_BATCH_SIZE", "5"))
    lock_timeout_ms: int = int(os.getenv("JOB_LOCK_TIMEOUT_MS", str(10 * 60 * 1000)))
    max_attempts: int = int(os.getenv("JOB_MAX_ATTEMPTS", "6"))
    backoff_base_seconds: int = int(os.getenv("JOB_BACKOFF_BASE_SECONDS", "30"))
    backoff_max_seconds: int = int(os.getenv("JOB_BACKOFF_MAX_SECONDS", "0"))  # 0 = uncapped
    stale_scan_limit: int = int(os.getenv("JOB_STALE_SCAN_LIMIT", "50"))
    transaction_attempts: int = int(os.getenv("STORE_TRANSACTION_ATTEMPTS", "5"))

    # Pipeline
    score_accept_threshold: int = int(os.getenv("SCORE_ACCEPT_THRESHOLD", "75"))
    max_candidates: int = int(os.getenv("PIPELINE_MAX_CANDIDATES", "200"))
    reeval_max_candidates: int = int(os.getenv("REEVAL_MAX_CANDIDATES", "30"))
    llm_max_concurrency: int = int(os.getenv("LLM_MAX_CONCURRENCY", "4"))
    llm_provider: str = os.getenv("LLM_PROVIDER", "openai")  # openai|heuristic

    # youtube|none
    captions_provider: str = os.getenv("CAPTIONS_PROVIDER", "youtube")
    captions_languages: str = os.getenv("CAPTIONS_LANGUAGES", "en")
    asr_enabled: bool = os.getenv("ASR_ENABLED", "0") == "1"
    check_public_video: bool = os.getenv("YOUTUBE_CHECK_PUBLIC", "1") == "1"

    # Worker / cron endpoints
    worker_secret: str = os.getenv("WORKER_SECRET", "")
    cron_secret: str = os.getenv("CRON_SECRET", "")

    @property
    def lock_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.lock_timeout_ms)

    @property
    def backoff_cap_seconds(self) -> int | None:
        return self.backoff_max_seconds if self.backoff_max_seconds > 0 else None

    @property
    def caption_language_list(self) -> list[str]:
        return [x.strip() for x in self.captions_languages.split(",") if x.strip()]


settings = Settings()
