import json

from material_pipeline.services.candidates import Candidate, Decision, Flag
from material_pipeline.services.examples import GENERIC_SCENARIO_TEMPLATE, attach_scenario_examples
from material_pipeline.services.reeval import reevaluate_candidates


def _cand(text, score, flags=None, segment="seg-0001"):
    return Candidate(
        key=text,
        expression_text=text,
        word_count=len(text.split()),
        occurrences=[{"segment_id": segment, "start_ms": 0, "end_ms": 1000}],
        flags=flags or [],
        score_final=score,
    )


def _reeval(cands, client, max_candidates=10):
    return reevaluate_candidates(
        cands, client=client, threshold=75, max_candidates=max_candidates, max_workers=2
    )


def test_no_client_uses_heuristic():
    _, accepted, rejected = _reeval([_cand("on the same page", 80), _cand("kind of", 60)], None)
    assert [c.expression_text for c in accepted] == ["on the same page"]
    assert accepted[0].decision_source == "heuristic"
    assert [c.expression_text for c in rejected] == ["kind of"]


def test_model_decision_wins_and_is_marked(fake_text_client):
    def reply(prompt):
        if "kind of" in prompt:
            return json.dumps({"decision": "accept", "reason_short": "口語で頻出", "meaning_ja": "ちょっと"})
        return json.dumps({"decision": "reject", "reasonShort": "汎用性が低い", "meaningJa": "同じ認識"})

    _, accepted, rejected = _reeval([_cand("on the same page", 80), _cand("kind of", 60)], fake_text_client(reply))

    assert [c.expression_text for c in accepted] == ["kind of"]
    assert accepted[0].decision_source == "openai"
    assert accepted[0].meaning_ja == "ちょっと"
    assert rejected[0].reason_short == "汎用性が低い"
    assert rejected[0].meaning_ja == "同じ認識"


def test_model_failure_falls_back_to_heuristic(fake_text_client):
    _, accepted, rejected = _reeval([_cand("on the same page", 80), _cand("kind of", 60)], fake_text_client(None))
    assert [c.expression_text for c in accepted] == ["on the same page"]
    assert {c.decision_source for c in accepted + rejected} == {"fallback"}


def test_unsafe_is_rejected_even_if_model_accepts(fake_text_client):
    client = fake_text_client(json.dumps({"decision": "accept"}))
    _, accepted, rejected = _reeval([_cand("holy shit", 95, flags=[Flag.UNSAFE])], client)
    assert accepted == []
    assert rejected[0].decision == Decision.REJECT
    # unsafe candidates are never sent to the model
    assert client.prompts == []


def test_only_top_candidates_are_reviewed(fake_text_client):
    client = fake_text_client(json.dumps({"decision": "reject"}))
    ranked, _, _ = _reeval([_cand("a b c", 90), _cand("d e f", 85), _cand("g h i", 80)], client, max_candidates=2)
    assert len(client.prompts) == 2
    assert [c.decision_source for c in ranked] == ["openai", "openai", "heuristic"]


def test_examples_fallbacks():
    segs = {"seg-0001": "We need to be on the same page."}
    with_ctx = _cand("on the same page", 80)
    no_ctx = _cand("touch base", 80, segment="seg-9999")

    out = attach_scenario_examples([with_ctx, no_ctx], client=None, segment_text_by_id=segs, max_workers=2)

    assert out[0].scenario_example == "We need to be on the same page."
    assert out[1].scenario_example == GENERIC_SCENARIO_TEMPLATE.format(text="touch base")
    assert out[1].scenario_example == 'In a meeting, I used "touch base" to explain my point clearly.'


def test_examples_from_model(fake_text_client):
    client = fake_text_client('"Let\'s touch base after lunch."')
    out = attach_scenario_examples([_cand("touch base", 80)], client=client, segment_text_by_id={}, max_workers=1)
    assert out[0].scenario_example == "Let's touch base after lunch."
