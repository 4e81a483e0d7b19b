from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor

from material_pipeline.services.candidates import Candidate, Decision, DecisionSource, decide
from material_pipeline.services.llm.client import LlmErr, TextGenerationClient
from material_pipeline.services.llm.prompts import REEVAL_SYSTEM, REEVAL_USER_TEMPLATE

logger = logging.getLogger(__name__)


def _context_lines(cand: Candidate, segment_text_by_id: dict[str, str], limit: int = 3) -> str:
    lines = []
    for occ in cand.occurrences[:limit]:
        txt = segment_text_by_id.get(occ["segment_id"])
        if txt:
            lines.append(f"- {txt}")
    return "\n".join(lines) or "- (no context)"


def _ask(cand: Candidate, client: TextGenerationClient, segment_text_by_id: dict[str, str]) -> Candidate:
    prompt = REEVAL_USER_TEMPLATE.format(
        expression=cand.expression_text,
        score=cand.score_final,
        axes=json.dumps(cand.axis_scores, ensure_ascii=False),
        flags=", ".join(cand.flags) or "none",
        context=_context_lines(cand, segment_text_by_id),
    )
    payload = client.generate_json(REEVAL_SYSTEM, prompt)

    decision = None if isinstance(payload, LlmErr) else str(payload.get("decision") or "").strip().lower()
    if decision not in (Decision.ACCEPT, Decision.REJECT):
        # keep the heuristic verdict, record that the model could not be used
        cand.decision_source = DecisionSource.FALLBACK
        return cand

    cand.decision = decision
    cand.decision_source = DecisionSource.OPENAI
    reason = payload.get("reason_short") or payload.get("reasonShort")
    meaning = payload.get("meaning_ja") or payload.get("meaningJa")
    if reason:
        cand.reason_short = str(reason).strip()
    if meaning:
        cand.meaning_ja = str(meaning).strip()
    return cand


def reevaluate_candidates(
    cands: list[Candidate],
    *,
    client: TextGenerationClient | None,
    threshold: int,
    max_candidates: int,
    max_workers: int,
    segment_text_by_id: dict[str, str] | None = None,
) -> tuple[list[Candidate], list[Candidate], list[Candidate]]:
    """
    Second opinion on the top-scored candidates, one independent model call each.
    Returns (reevaluated, accepted, rejected). Unsafe candidates are rejected whatever the model says.
    """
    segment_text_by_id = segment_text_by_id or {}
    ranked = sorted(cands, key=lambda c: (-c.score_final, c.expression_text))

    for c in ranked:
        c.decision = decide(c.score_final, c.flags, threshold)
        c.decision_source = DecisionSource.HEURISTIC

    to_review = [c for c in ranked[: max(0, max_candidates)] if not c.is_unsafe]
    if client is not None and to_review:
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            list(pool.map(lambda c: _ask(c, client, segment_text_by_id), to_review))

    for c in ranked:
        if c.is_unsafe:
            c.decision = Decision.REJECT

    accepted = [c for c in ranked if c.decision == Decision.ACCEPT]
    rejected = [c for c in ranked if c.decision != Decision.ACCEPT]
    logger.debug("reeval: %s accepted, %s rejected", len(accepted), len(rejected))
    return ranked, accepted, rejected
