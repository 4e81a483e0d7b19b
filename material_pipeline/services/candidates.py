from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any

# ----------------------------
# Candidate record
# ----------------------------


class Decision:
    PENDING = "pending"
    ACCEPT = "accept"
    REJECT = "reject"


class DecisionSource:
    HEURISTIC = "heuristic"
    OPENAI = "openai"
    FALLBACK = "fallback"


class Flag:
    SINGLE_WORD = "single_word"
    RARE_OCCURRENCE = "rare_occurrence"
    UNSAFE = "unsafe_or_inappropriate"


AXES = ("utility", "portability", "naturalness", "c1_value", "context_robustness")

AXIS_WEIGHTS: dict[str, float] = {
    "utility": 0.25,
    "portability": 0.20,
    "naturalness": 0.20,
    "c1_value": 0.20,
    "context_robustness": 0.15,
}

FLAG_PENALTIES: dict[str, int] = {
    Flag.SINGLE_WORD: 10,
    Flag.RARE_OCCURRENCE: 5,
    Flag.UNSAFE: 50,
}


@dataclass
class Candidate:
    key: str
    expression_text: str
    word_count: int
    occurrences: list[dict[str, Any]] = field(default_factory=list)  # [{segment_id, start_ms, end_ms}]
    axis_scores: dict[str, int] = field(default_factory=dict)
    flags: list[str] = field(default_factory=list)
    score_final: int = 0
    decision: str = Decision.PENDING
    decision_source: str = DecisionSource.HEURISTIC
    reason_short: str | None = None
    meaning_ja: str | None = None
    scenario_example: str | None = None

    @property
    def is_unsafe(self) -> bool:
        return Flag.UNSAFE in self.flags

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Candidate:
        return cls(**data)


def candidates_from_dicts(rows: list[dict[str, Any]] | None) -> list[Candidate]:
    return [Candidate.from_dict(r) for r in rows or []]


def candidates_to_dicts(cands: list[Candidate]) -> list[dict[str, Any]]:
    return [c.to_dict() for c in cands]


# ----------------------------
# Extraction
# ----------------------------

_MAX_NGRAM = int(os.getenv("PIPELINE_MAX_NGRAM", "4"))

_word_re = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")

STOP_WORDS = frozenset(
    """
    a an the and or but if so of to in on at by for with from as is are was were be been being
    am do does did have has had i you he she it we they me him her us them my your his its our their
    this that these those there here what which who whom whose when where why how not no yes
    just very really um uh oh okay ok like yeah well also too then than can could would should will
    shall may might must s t
    """.split()
)

# Any of these tokens forces a reject regardless of score.
UNSAFE_WORDS = frozenset(
    """
    fuck fucking fucked shit bullshit bitch bastard asshole cunt slut whore
    """.split()
)


def _tokens(text: str) -> list[str]:
    return _word_re.findall((text or "").lower().replace("\u2019", "'"))


def extract_candidates(segments: list[dict[str, Any]], *, max_ngram: int = _MAX_NGRAM) -> list[Candidate]:
    """
    Word n-grams (1..max_ngram) over each segment, merged by phrase.
    A phrase records at most one occurrence per segment.
    """
    by_key: dict[str, Candidate] = {}

    for seg in segments or []:
        toks = _tokens(seg.get("text") or "")
        seen_in_segment: set[str] = set()
        for n in range(1, max_ngram + 1):
            for i in range(0, len(toks) - n + 1):
                key = " ".join(toks[i : i + n])
                if key in seen_in_segment:
                    continue
                seen_in_segment.add(key)

                cand = by_key.get(key)
                if cand is None:
                    cand = Candidate(key=key, expression_text=key, word_count=n)
                    by_key[key] = cand
                cand.occurrences.append(
                    {
                        "segment_id": seg["segment_id"],
                        "start_ms": int(seg["start_ms"]),
                        "end_ms": int(seg["end_ms"]),
                    }
                )

    return list(by_key.values())


# ----------------------------
# Filtering
# ----------------------------

_URL_TOKENS = frozenset({"http", "https", "www", "com"})
_NUMERIC_RE = re.compile(r"^[\d\s]+$")


def filter_reason(cand: Candidate) -> str | None:
    text = cand.expression_text
    if len(text.replace(" ", "")) < 3:
        return "too_short"
    if any(t in _URL_TOKENS for t in text.split()):
        return "url_like"
    if _NUMERIC_RE.match(text):
        return "numeric"
    if cand.word_count == 1 and text in STOP_WORDS:
        return "stop_word"
    return None


def filter_candidates(cands: list[Candidate], *, max_candidates: int) -> list[Candidate]:
    kept = [c for c in cands if filter_reason(c) is None]
    kept.sort(key=lambda c: (-len(c.occurrences), -c.word_count, c.expression_text))
    return kept[: max(0, max_candidates)]


# ----------------------------
# Scoring
# ----------------------------

_PORTABILITY_BY_WORDS = {1: 55, 2: 80, 3: 85, 4: 75}


def _clamp(v: float, lo: int = 0, hi: int = 100) -> int:
    return int(max(lo, min(hi, round(v))))


def compute_axis_scores(cand: Candidate) -> dict[str, int]:
    toks = cand.expression_text.split()
    occ = len(cand.occurrences)
    distinct_segments = len({o["segment_id"] for o in cand.occurrences})
    avg_len = sum(len(t) for t in toks) / len(toks) if toks else 0.0
    stop_edges = int(bool(toks) and toks[0] in STOP_WORDS) + int(bool(toks) and toks[-1] in STOP_WORDS)
    content_ratio = (sum(1 for t in toks if t not in STOP_WORDS) / len(toks)) if toks else 0.0

    return {
        "utility": _clamp(50 + 15 * (occ - 1)),
        "portability": _PORTABILITY_BY_WORDS.get(cand.word_count, 60),
        "naturalness": _clamp(95 - 20 * stop_edges),
        "c1_value": _clamp(30 + 8 * avg_len + 20 * content_ratio),
        "context_robustness": _clamp(50 + 20 * (distinct_segments - 1)),
    }


def compute_flags(cand: Candidate) -> list[str]:
    flags: list[str] = []
    if cand.word_count == 1:
        flags.append(Flag.SINGLE_WORD)
    if len(cand.occurrences) <= 1:
        flags.append(Flag.RARE_OCCURRENCE)
    if any(t in UNSAFE_WORDS for t in cand.expression_text.split()):
        flags.append(Flag.UNSAFE)
    return flags


def compute_final_score(axis_scores: dict[str, int], flags: list[str]) -> int:
    weighted = sum(AXIS_WEIGHTS[a] * float(axis_scores.get(a, 0)) for a in AXES)
    penalty = sum(FLAG_PENALTIES.get(f, 0) for f in flags)
    return _clamp(weighted - penalty)


def decide(score_final: int, flags: list[str], threshold: int) -> str:
    if Flag.UNSAFE in flags:
        return Decision.REJECT
    return Decision.ACCEPT if score_final >= threshold else Decision.REJECT


def heuristic_reason(cand: Candidate) -> str:
    return f"5軸評価={cand.score_final}, 出現={len(cand.occurrences)}"


def score_candidates(cands: list[Candidate], *, threshold: int) -> list[Candidate]:
    """Fills axis scores, flags, final score and the heuristic decision. Sorted by score desc."""
    for c in cands:
        c.axis_scores = compute_axis_scores(c)
        c.flags = compute_flags(c)
        c.score_final = compute_final_score(c.axis_scores, c.flags)
        c.decision = decide(c.score_final, c.flags, threshold)
        c.decision_source = DecisionSource.HEURISTIC
        c.reason_short = heuristic_reason(c)
    return sorted(cands, key=lambda c: (-c.score_final, c.expression_text))
