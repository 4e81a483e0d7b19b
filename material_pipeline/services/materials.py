from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_pipeline.models.material import Material, MaterialStatus
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.jobs import enqueue_material_pipeline_job
from material_pipeline.services.youtube import (
    VideoMetadata,
    build_video_url,
    extract_youtube_video_id,
    fetch_public_video_metadata,
)

logger = logging.getLogger(__name__)


class InvalidYouTubeUrl(ValueError):
    pass


class VideoNotPublic(ValueError):
    pass


@dataclass
class MaterialRegistration:
    material_id: str
    job_id: str
    status: str
    reused: bool


def register_material(
    store: JobStore,
    youtube_url: str,
    *,
    check_public: bool | None = None,
    fetch_metadata=fetch_public_video_metadata,
) -> MaterialRegistration:
    """
    Parse the URL, reuse the material already registered for this video and pipeline version,
    otherwise create one, then enqueue its pipeline job (idempotent).
    """
    video_id = extract_youtube_video_id(youtube_url)
    if not video_id:
        raise InvalidYouTubeUrl(f"Not a YouTube video URL: {youtube_url}")

    if check_public is None:
        check_public = store.settings.check_public_video

    metadata: VideoMetadata | None = None
    if check_public:
        metadata = fetch_metadata(video_id)
        if metadata is None:
            raise VideoNotPublic(f"Video {video_id} is private, removed or not embeddable")

    version = store.settings.pipeline_version

    def _find_or_create(db: Session) -> tuple[str, bool]:
        existing = db.scalars(
            select(Material)
            .where(Material.youtube_id == video_id, Material.pipeline_version == version)
            .order_by(Material.created_at.asc())
            .limit(1)
        ).first()
        if existing is not None:
            return existing.id, True

        now = store.now()
        material = Material(
            id=uuid.uuid4().hex,
            youtube_url=build_video_url(video_id),
            youtube_id=video_id,
            title=metadata.title if metadata else None,
            channel=metadata.channel if metadata else None,
            status=MaterialStatus.QUEUED,
            pipeline_version=version,
            created_at=now,
            updated_at=now,
        )
        db.add(material)
        return material.id, False

    material_id, reused = store.run_transaction(_find_or_create)
    job_id = enqueue_material_pipeline_job(store, material_id)

    material = store.run_transaction(lambda db: db.get(Material, material_id))
    logger.info("material %s for video %s (reused=%s)", material_id, video_id, reused)
    return MaterialRegistration(material_id=material_id, job_id=job_id, status=material.status, reused=reused)
