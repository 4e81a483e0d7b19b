import json
import os
import tempfile

# Must run before material_pipeline is imported: settings and the engine read these at import time.
_TMP_DIR = tempfile.mkdtemp(prefix="material-pipeline-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["ENV"] = "test"
os.environ["CAPTIONS_PROVIDER"] = "none"
os.environ.pop("OPENAI_API_KEY", None)

from dataclasses import replace  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

import material_pipeline.models  # noqa: E402,F401
from material_pipeline.core.config import settings  # noqa: E402
from material_pipeline.db.base import Base  # noqa: E402
from material_pipeline.db.session import SessionLocal, engine  # noqa: E402
from material_pipeline.models.job import Job, JobStatus, JobType  # noqa: E402
from material_pipeline.models.material import Material, MaterialStatus  # noqa: E402
from material_pipeline.services.captions import CaptionCue, CaptionFetchResult  # noqa: E402
from material_pipeline.services.job_policy import build_job_id  # noqa: E402
from material_pipeline.services.job_store import JobStore  # noqa: E402
from material_pipeline.services.llm.client import LlmErr, LlmOk  # noqa: E402
from material_pipeline.services.pipeline.providers import PipelineProviders  # noqa: E402


class FrozenClock:
    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


class FakeCaptionProvider:
    def __init__(self, result: CaptionFetchResult):
        self.result = result
        self.calls = 0

    def fetch_captions(self, *, material_id, youtube_id, youtube_url):
        self.calls += 1
        return self.result


class FakeTextClient:
    """Stands in for TextGenerationClient: replies come from a callable or a fixed result."""

    def __init__(self, reply=None):
        self.reply = reply
        self.prompts = []

    def generate(self, system_prompt, user_prompt, *, temperature=0.2):
        self.prompts.append(user_prompt)
        reply = self.reply(user_prompt) if callable(self.reply) else self.reply
        if reply is None:
            return LlmErr(code="request_failed", message="OpenAI request failed with status 500.")
        if isinstance(reply, (LlmOk, LlmErr)):
            return reply
        return LlmOk(text=reply)

    def generate_json(self, system_prompt, user_prompt, *, temperature=0.2):
        result = self.generate(system_prompt, user_prompt, temperature=temperature)
        if isinstance(result, LlmErr):
            return result
        try:
            return json.loads(result.text)
        except ValueError:
            return LlmErr(code="invalid_response", message="bad json")


SAMPLE_CUES = [
    CaptionCue(start_ms=0, end_ms=2500, text="Most people take it for granted."),
    CaptionCue(start_ms=2500, end_ms=5200, text="We take it for granted every single day."),
    CaptionCue(start_ms=5200, end_ms=8000, text="Please don't take it for granted, okay?"),
    CaptionCue(start_ms=8000, end_ms=11000, text="Visit www example com for the slides."),
]


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_settings():
    return replace(
        settings,
        pipeline_version="v1",
        dispatch_batch_size=5,
        lock_timeout_ms=10 * 60 * 1000,
        max_attempts=6,
        backoff_base_seconds=30,
        backoff_max_seconds=0,
        stale_scan_limit=50,
        score_accept_threshold=75,
        llm_max_concurrency=2,
        check_public_video=False,
        captions_provider="none",
        worker_secret="worker-secret",
        cron_secret="cron-secret",
    )


@pytest.fixture
def store(clock, test_settings):
    return JobStore(SessionLocal, clock=clock, settings=test_settings)


@pytest.fixture
def make_material(store):
    def _make(material_id="mat-1", youtube_id="dQw4w9WgXcQ", status=MaterialStatus.QUEUED, **kw):
        now = store.now()
        material = Material(
            id=material_id,
            youtube_url=f"https://www.youtube.com/watch?v={youtube_id}",
            youtube_id=youtube_id,
            status=status,
            pipeline_version=kw.pop("pipeline_version", store.settings.pipeline_version),
            created_at=now,
            updated_at=now,
            **kw,
        )
        store.run_transaction(lambda db: db.add(material))
        return material

    return _make


@pytest.fixture
def make_job(store):
    def _make(
        target_id="mat-1",
        *,
        job_id=None,
        job_type=JobType.MATERIAL_PIPELINE,
        status=JobStatus.QUEUED,
        step="meta",
        attempt=0,
        next_run_at=None,
        locked_by="",
        locked_at=None,
        pipeline_version=None,
    ):
        now = store.now()
        version = pipeline_version or store.settings.pipeline_version
        job = Job(
            id=job_id or build_job_id(job_type, target_id, version),
            type=job_type,
            target_id=target_id,
            pipeline_version=version,
            status=status,
            step=step,
            attempt=attempt,
            next_run_at=next_run_at or now,
            locked_by=locked_by,
            locked_at=locked_at,
            created_at=now,
            updated_at=now,
        )
        assert store.create(job)
        return store.get(job.id)

    return _make


@pytest.fixture
def caption_provider():
    return FakeCaptionProvider(CaptionFetchResult.fetched(SAMPLE_CUES, source="youtube_captions"))


@pytest.fixture
def providers(caption_provider):
    return PipelineProviders(captions=caption_provider, text_generation=None, asr=None)


@pytest.fixture
def fake_text_client():
    return FakeTextClient
