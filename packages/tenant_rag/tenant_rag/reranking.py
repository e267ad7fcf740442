"""Lexical reranking of retrieved chunks before prompt assembly."""
from __future__ import annotations

import re
from typing import List, Sequence

from .schemas import RetrievedContext

TERM_PATTERN = re.compile(r"\w+")
TERM_BOOST = 0.02
LEAD_CHUNK_BOOST = 0.01
MIN_TERM_LENGTH = 3


def query_terms(question: str) -> List[str]:
    return [term for term in TERM_PATTERN.findall(question.lower()) if len(term) >= MIN_TERM_LENGTH]


def rerank_contexts(contexts: Sequence[RetrievedContext], question: str) -> List[RetrievedContext]:
    """Boost chunks that repeat the question's terms or open their document.

    Each question term found in a chunk adds ``TERM_BOOST`` and a chunk at index 0
    adds ``LEAD_CHUNK_BOOST``; the boosted similarity is capped at 1.0. The sort is
    stable, so ties keep their retrieval order.
    """

    terms = query_terms(question)
    ranked: List[RetrievedContext] = []
    for context in contexts:
        content = context.content.lower()
        boost = TERM_BOOST * sum(1 for term in terms if term in content)
        if context.chunk_index == 0:
            boost += LEAD_CHUNK_BOOST
        ranked.append(context.model_copy(update={"similarity": min(1.0, context.similarity + boost)}))
    ranked.sort(key=lambda context: context.similarity, reverse=True)
    return ranked
