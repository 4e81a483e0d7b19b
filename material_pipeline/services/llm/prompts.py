REEVAL_SYSTEM = """You review English expressions extracted from a YouTube video for Japanese learners at B2-C1 level.
Decide whether the expression is worth studying: useful in real conversation, natural, reusable outside this video.
Reject fragments, filler, proper nouns and anything offensive.

Return ONLY valid JSON with this schema:
{
  "decision": "accept" | "reject",
  "reason_short": "string (Japanese, max 40 chars)",
  "meaning_ja": "string (natural Japanese meaning)"
}
"""

REEVAL_USER_TEMPLATE = """Expression: "{expression}"
Heuristic score: {score}/100
Axis scores: {axes}
Flags: {flags}
Context from the video:
{context}
"""

EXAMPLE_SYSTEM = """You write one short, natural English example sentence for a learner.
The sentence must use the given expression exactly once, describe an everyday work or life scenario,
and be at most 25 words. Return only the sentence, no quotes, no explanation.
"""

EXAMPLE_USER_TEMPLATE = """Expression: "{expression}"
Meaning (Japanese): {meaning_ja}
Original context: {context}
"""

GLOSSARY_SYSTEM = """You explain English words and phrases to Japanese learners.
Return only the meaning in natural Japanese (one or two short sentences), no romanization, no quotes.
"""

GLOSSARY_USER_TEMPLATE = """Phrase: "{surface_text}"
"""
