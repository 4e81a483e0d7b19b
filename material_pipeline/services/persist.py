from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from material_pipeline.models.expression import Expression
from material_pipeline.services.candidates import Candidate, Decision
from material_pipeline.services.glossary import glossary_hash


def expression_id_for(text: str) -> str:
    return glossary_hash(text)


def upsert_expressions(db: Session, material_id: str, cands: list[Candidate], *, now: datetime) -> int:
    """
    Idempotent upsert keyed by (material_id, sha256(normalized text)).
    created_at survives re-runs; everything else is overwritten. Returns the number of rows written.
    """
    by_id: dict[str, Candidate] = {}
    for c in cands:
        if c.decision != Decision.ACCEPT or c.is_unsafe:
            continue
        eid = expression_id_for(c.expression_text)
        prev = by_id.get(eid)
        if prev is None or c.score_final > prev.score_final:
            by_id[eid] = c

    for eid, c in by_id.items():
        row = db.get(Expression, (material_id, eid))
        if row is None:
            row = Expression(material_id=material_id, expression_id=eid, created_at=now)
            db.add(row)
        row.expression_text = c.expression_text
        row.score_final = c.score_final
        row.axis_scores = dict(c.axis_scores)
        row.flags = list(c.flags)
        row.decision_source = c.decision_source
        row.meaning_ja = c.meaning_ja
        row.reason_short = c.reason_short
        row.scenario_example = c.scenario_example
        row.occurrences = [dict(o) for o in c.occurrences]
        row.updated_at = now

    return len(by_id)
