from fastapi import FastAPI
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from material_pipeline import __version__
from material_pipeline.api.jobs import router as jobs_router
from material_pipeline.api.materials import router as materials_router
from material_pipeline.core.logging import configure_logging
from material_pipeline.db.session import SessionLocal

configure_logging()

app = FastAPI(title="Material Pipeline API", version=__version__)
app.include_router(materials_router)
app.include_router(jobs_router)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    db_ok: bool


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        db_ok = False
    finally:
        db.close()

    return HealthResponse(ok=True, service="api", version=app.version, db_ok=db_ok)
