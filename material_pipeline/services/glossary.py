from __future__ import annotations

import hashlib
import logging
import re
import unicodedata

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_pipeline.models.expression import Expression
from material_pipeline.models.glossary_entry import GlossaryEntry
from material_pipeline.services.job_store import JobStore
from material_pipeline.services.llm.client import LlmOk, TextGenerationClient
from material_pipeline.services.llm.prompts import GLOSSARY_SYSTEM, GLOSSARY_USER_TEMPLATE

logger = logging.getLogger(__name__)


class GlossarySource:
    OPENAI = "openai"
    EXPRESSION = "expression"
    FALLBACK = "fallback"


# ----------------------------
# Normalization
# ----------------------------

_QUOTES_RE = re.compile(r"[\u2018\u2019\u201a\u201b\u2032`\u00b4]")
_DQUOTES_RE = re.compile(r"[\u201c\u201d\u201e\u201f\u2033]")
_DASHES_RE = re.compile(r"[\u2010-\u2015\u2212]")
_EDGE_PUNCT_RE = re.compile(r"^[\s\"'.,!?;:()\[\]{}<>]+|[\s\"'.,!?;:()\[\]{}<>]+$")
_TIGHT_RE = re.compile(r"\s*([/\-'])\s*")


def normalize_surface_text(text: str) -> str:
    """
    NFKC, curly quotes and dash variants folded to ASCII, surrounding punctuation trimmed,
    whitespace collapsed, spaces around / - ' removed, lowercased.
    """
    s = unicodedata.normalize("NFKC", text or "")
    s = _QUOTES_RE.sub("'", s)
    s = _DQUOTES_RE.sub('"', s)
    s = _DASHES_RE.sub("-", s)
    s = re.sub(r"\s+", " ", s).strip()
    s = _EDGE_PUNCT_RE.sub("", s)
    s = _TIGHT_RE.sub(r"\1", s)
    return s.lower()


def glossary_hash(text: str) -> str:
    return hashlib.sha256(normalize_surface_text(text).encode("utf-8")).hexdigest()


def build_fallback_meaning_ja(surface_text: str) -> str:
    surface = normalize_surface_text(surface_text)
    if " " in surface:
        return f"「{surface}」は動画内で使われた英語の言い回しです。前後の文脈と合わせて意味を確認しましょう。"
    return f"「{surface}」は動画内で使われた英単語です。前後の文脈と合わせて意味を確認しましょう。"


# ----------------------------
# Entries
# ----------------------------

def _generate_meaning(surface_text: str, client: TextGenerationClient | None) -> tuple[str, str]:
    if client is not None:
        result = client.generate(GLOSSARY_SYSTEM, GLOSSARY_USER_TEMPLATE.format(surface_text=surface_text))
        if isinstance(result, LlmOk):
            return result.text, GlossarySource.OPENAI
    return build_fallback_meaning_ja(surface_text), GlossarySource.FALLBACK


def get_or_create_glossary_entry(
    store: JobStore,
    material_id: str,
    surface_text: str,
    *,
    client: TextGenerationClient | None = None,
    meaning_ja: str | None = None,
) -> tuple[GlossaryEntry, bool]:
    """
    Cached per material by hash of the normalized text.
    Returns (entry, created). A known meaning_ja skips generation.
    """
    normalized = normalize_surface_text(surface_text)
    if not normalized:
        raise ValueError("surface_text is empty after normalization")
    key = glossary_hash(normalized)

    def _get(db: Session) -> GlossaryEntry | None:
        return db.get(GlossaryEntry, (material_id, key))

    existing = store.run_transaction(_get)
    if existing is not None:
        return existing, False

    # generation happens outside the transaction
    if meaning_ja:
        meaning, source = meaning_ja, GlossarySource.EXPRESSION
    else:
        meaning, source = _generate_meaning(normalized, client)

    def _create(db: Session) -> tuple[GlossaryEntry, bool]:
        found = db.get(GlossaryEntry, (material_id, key))
        if found is not None:
            return found, False
        entry = GlossaryEntry(
            material_id=material_id,
            hash=key,
            surface_text=normalized,
            meaning_ja=meaning,
            source=source,
            created_at=store.now(),
        )
        db.add(entry)
        return entry, True

    return store.run_transaction(_create)


def fill_glossary_for_material(
    store: JobStore,
    material_id: str,
    *,
    client: TextGenerationClient | None = None,
) -> int:
    """Ensure every persisted expression of the material has a glossary entry. Returns entries created."""

    def _list(db: Session) -> list[Expression]:
        stmt = select(Expression).where(Expression.material_id == material_id).order_by(Expression.expression_id)
        return list(db.scalars(stmt).all())

    created = 0
    for expr in store.run_transaction(_list):
        _entry, was_created = get_or_create_glossary_entry(
            store,
            material_id,
            expr.expression_text,
            client=client,
            meaning_ja=expr.meaning_ja,
        )
        created += int(was_created)

    logger.info("glossary for material %s: %s new entries", material_id, created)
    return created
