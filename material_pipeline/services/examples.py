from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from material_pipeline.services.candidates import Candidate
from material_pipeline.services.llm.client import LlmOk, TextGenerationClient
from material_pipeline.services.llm.prompts import EXAMPLE_SYSTEM, EXAMPLE_USER_TEMPLATE

GENERIC_SCENARIO_TEMPLATE = 'In a meeting, I used "{text}" to explain my point clearly.'


def fallback_scenario_example(cand: Candidate, segment_text_by_id: dict[str, str]) -> str:
    for occ in cand.occurrences:
        txt = (segment_text_by_id.get(occ["segment_id"]) or "").strip()
        if txt:
            return txt
    return GENERIC_SCENARIO_TEMPLATE.format(text=cand.expression_text)


def _example_for(cand: Candidate, client: TextGenerationClient | None, segment_text_by_id: dict[str, str]) -> Candidate:
    if client is not None:
        first_ctx = fallback_scenario_example(cand, segment_text_by_id)
        result = client.generate(
            EXAMPLE_SYSTEM,
            EXAMPLE_USER_TEMPLATE.format(
                expression=cand.expression_text,
                meaning_ja=cand.meaning_ja or "-",
                context=first_ctx,
            ),
        )
        if isinstance(result, LlmOk):
            sentence = result.text.strip().strip('"').strip()
            if sentence:
                cand.scenario_example = sentence
                return cand

    cand.scenario_example = fallback_scenario_example(cand, segment_text_by_id)
    return cand


def attach_scenario_examples(
    cands: list[Candidate],
    *,
    client: TextGenerationClient | None,
    segment_text_by_id: dict[str, str],
    max_workers: int,
) -> list[Candidate]:
    if not cands:
        return []
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        return list(pool.map(lambda c: _example_for(c, client, segment_text_by_id), cands))
