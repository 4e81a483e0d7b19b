from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from material_pipeline.api.deps import get_providers, get_store
from material_pipeline.db.session import get_db
from material_pipeline.models.expression import Expression
from material_pipeline.models.material import Material, MaterialStatus
from material_pipeline.models.segment import Segment
from material_pipeline.services.glossary import get_or_create_glossary_entry
from material_pipeline.services.job_executor import run_job_to_completion
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.jobs import create_worker_id
from material_pipeline.services.materials import InvalidYouTubeUrl, VideoNotPublic, register_material
from material_pipeline.services.pipeline.providers import PipelineProviders
from material_pipeline.services.youtube import YouTubeLookupError

router = APIRouter(prefix="/materials", tags=["materials"])

EXPRESSION_LIST_LIMIT = 20
MATERIAL_HISTORY_LIMIT = 50


class MaterialCreateRequest(BaseModel):
    youtube_url: str


class MaterialCreateResponse(BaseModel):
    ok: bool
    material_id: str
    job_id: str
    status: str
    reused: bool


class GlossaryRequest(BaseModel):
    surface_text: str


def _get_material_or_404(db: Session, material_id: str) -> Material:
    material = db.get(Material, material_id)
    if material is None:
        raise HTTPException(status_code=404, detail="Material not found")
    return material


@router.post("", response_model=MaterialCreateResponse)
def create_material(
    req: MaterialCreateRequest,
    store: JobStore = Depends(get_store),
    providers: PipelineProviders = Depends(get_providers),
) -> MaterialCreateResponse:
    try:
        reg = register_material(store, req.youtube_url)
    except (InvalidYouTubeUrl, VideoNotPublic) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except YouTubeLookupError as e:
        raise HTTPException(status_code=502, detail=str(e))

    status = reg.status
    if status != MaterialStatus.READY:
        run_job_to_completion(store, reg.job_id, worker_id=create_worker_id("api"), providers=providers)
        material = store.run_transaction(lambda db: db.get(Material, reg.material_id))
        status = material.status

    return MaterialCreateResponse(
        ok=True,
        material_id=reg.material_id,
        job_id=reg.job_id,
        status=status,
        reused=reg.reused,
    )


def _material_out(m: Material) -> dict:
    return {
        "id": m.id,
        "youtube_url": m.youtube_url,
        "youtube_id": m.youtube_id,
        "title": m.title,
        "channel": m.channel,
        "duration_sec": m.duration_sec,
        "status": m.status,
        "pipeline_version": m.pipeline_version,
        "pipeline_state": m.pipeline_state,
        "created_at": m.created_at,
        "updated_at": m.updated_at,
    }


@router.get("")
def list_materials(db: Session = Depends(get_db)):
    """History: most recently updated first."""
    rows = db.scalars(
        select(Material)
        .order_by(Material.updated_at.desc(), Material.created_at.desc(), Material.id)
        .limit(MATERIAL_HISTORY_LIMIT)
    ).all()
    return {"ok": True, "materials": [_material_out(m) for m in rows]}


@router.get("/{material_id}")
def get_material(material_id: str, db: Session = Depends(get_db)):
    m = _get_material_or_404(db, material_id)
    return {"ok": True, "material": _material_out(m)}


@router.get("/{material_id}/segments")
def list_segments(material_id: str, db: Session = Depends(get_db)):
    _get_material_or_404(db, material_id)
    rows = db.scalars(
        select(Segment)
        .where(Segment.material_id == material_id)
        .order_by(Segment.start_ms, Segment.end_ms, Segment.segment_id)
    ).all()
    return {
        "ok": True,
        "material_id": material_id,
        "segments": [
            {"id": s.segment_id, "start_ms": s.start_ms, "end_ms": s.end_ms, "text": s.text} for s in rows
        ],
    }


@router.get("/{material_id}/expressions")
def list_expressions(material_id: str, db: Session = Depends(get_db)):
    _get_material_or_404(db, material_id)
    rows = db.scalars(
        select(Expression)
        .where(Expression.material_id == material_id)
        .order_by(Expression.score_final.desc(), Expression.created_at.desc(), Expression.expression_id)
        .limit(EXPRESSION_LIST_LIMIT)
    ).all()
    return {
        "ok": True,
        "material_id": material_id,
        "expressions": [
            {
                "id": e.expression_id,
                "expression_text": e.expression_text,
                "score_final": e.score_final,
                "axis_scores": e.axis_scores,
                "flags": e.flags,
                "decision_source": e.decision_source,
                "meaning_ja": e.meaning_ja,
                "reason_short": e.reason_short,
                "scenario_example": e.scenario_example,
                "occurrences": e.occurrences,
                "created_at": e.created_at,
            }
            for e in rows
        ],
    }


@router.post("/{material_id}/glossary")
def lookup_glossary(
    material_id: str,
    req: GlossaryRequest,
    db: Session = Depends(get_db),
    store: JobStore = Depends(get_store),
    providers: PipelineProviders = Depends(get_providers),
):
    _get_material_or_404(db, material_id)
    try:
        entry, created = get_or_create_glossary_entry(
            store, material_id, req.surface_text, client=providers.text_generation
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "ok": True,
        "material_id": material_id,
        "surface_text": entry.surface_text,
        "hash": entry.hash,
        "meaning_ja": entry.meaning_ja,
        "source": entry.source,
        "cached": not created,
    }
