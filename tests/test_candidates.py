from material_pipeline.services.candidates import (
    Candidate,
    Decision,
    Flag,
    compute_final_score,
    compute_flags,
    decide,
    extract_candidates,
    filter_candidates,
    score_candidates,
)

SEGMENTS = [
    {"segment_id": "seg-0001", "start_ms": 0, "end_ms": 1000, "text": "Let's get the ball rolling."},
    {"segment_id": "seg-0002", "start_ms": 1000, "end_ms": 2000, "text": "OK, get the ball rolling, get the ball rolling!"},
]


def test_extract_merges_phrases_once_per_segment():
    cands = {c.key: c for c in extract_candidates(SEGMENTS)}

    assert "get the ball rolling" in cands
    occ = cands["get the ball rolling"].occurrences
    assert [o["segment_id"] for o in occ] == ["seg-0001", "seg-0002"]
    assert occ[0] == {"segment_id": "seg-0001", "start_ms": 0, "end_ms": 1000}
    assert cands["let's"].word_count == 1
    assert max(c.word_count for c in cands.values()) == 4


def test_extract_empty():
    assert extract_candidates([]) == []
    assert extract_candidates([{"segment_id": "seg-0001", "start_ms": 0, "end_ms": 5, "text": "..."}]) == []


def _cand(text, occurrences=1):
    return Candidate(
        key=text,
        expression_text=text,
        word_count=len(text.split()),
        occurrences=[{"segment_id": f"seg-{i:04d}", "start_ms": 0, "end_ms": 1} for i in range(occurrences)],
    )


def test_filter_rules_and_cap():
    cands = [_cand("ok"), _cand("the"), _cand("www example"), _cand("2024"), _cand("ball rolling", 3), _cand("ballpark", 2)]
    kept = filter_candidates(cands, max_candidates=10)
    assert [c.expression_text for c in kept] == ["ball rolling", "ballpark"]

    assert len(filter_candidates(cands, max_candidates=1)) == 1


def test_threshold_boundary():
    assert decide(75, [], 75) == Decision.ACCEPT
    assert decide(74, [], 75) == Decision.REJECT
    assert decide(100, [Flag.UNSAFE], 75) == Decision.REJECT


def test_final_score_is_clamped_and_penalized():
    axes = {"utility": 100, "portability": 100, "naturalness": 100, "c1_value": 100, "context_robustness": 100}
    assert compute_final_score(axes, []) == 100
    assert compute_final_score(axes, [Flag.SINGLE_WORD]) == 90
    assert compute_final_score(dict.fromkeys(axes, 0), [Flag.UNSAFE]) == 0


def test_flags():
    assert compute_flags(_cand("ballpark")) == [Flag.SINGLE_WORD, Flag.RARE_OCCURRENCE]
    assert compute_flags(_cand("ball rolling", 2)) == []
    assert Flag.UNSAFE in compute_flags(_cand("holy shit", 3))


def test_score_orders_and_sets_heuristic_decision():
    scored = score_candidates([_cand("ballpark"), _cand("get the ball rolling", 3)], threshold=75)
    assert scored[0].expression_text == "get the ball rolling"
    assert scored[0].decision == Decision.ACCEPT
    assert scored[0].decision_source == "heuristic"
    assert scored[0].reason_short.startswith("5軸評価=")
    assert set(scored[0].axis_scores) == {"utility", "portability", "naturalness", "c1_value", "context_robustness"}
    assert scored[1].decision == Decision.REJECT
