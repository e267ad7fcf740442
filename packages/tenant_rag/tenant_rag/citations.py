"""Citation extraction and confidence scoring."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .schemas import Citation, RetrievedContext

CITATION_PATTERN = re.compile(r"\[(?:Citation\s*)?(\d+)\]", re.IGNORECASE)
SNIPPET_LENGTH = 200


@dataclass
class CitationExtraction:
    text: str
    citations: List[Citation] = field(default_factory=list)
    unknown_references: List[int] = field(default_factory=list)


def similarity_to_confidence(similarity: float) -> float:
    """Stretch raw cosine similarity into a user facing confidence."""

    if similarity >= 0.9:
        value = 0.95 + (similarity - 0.9) * 0.5
    elif similarity >= 0.8:
        value = 0.85 + (similarity - 0.8) * 1.0
    elif similarity >= 0.7:
        value = 0.70 + (similarity - 0.7) * 1.5
    else:
        value = similarity * 0.9
    return round(min(1.0, max(0.0, value)), 4)


def confidence_label(confidence: float) -> str:
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.5:
        return "medium"
    return "low"


def _snippet(content: str) -> str:
    content = " ".join(content.split())
    if len(content) <= SNIPPET_LENGTH:
        return content
    return content[:SNIPPET_LENGTH].rstrip() + "..."


def extract_citations(answer: str, contexts: Sequence[RetrievedContext]) -> CitationExtraction:
    """Resolve ``[n]`` markers against the numbered contexts.

    Markers are renumbered so each distinct document gets one index, in order
    of first reference. Numbers outside ``1..len(contexts)`` stay in the text
    untouched.
    """

    doc_index: Dict[str, int] = {}
    citations: Dict[str, Citation] = {}
    unknown: List[int] = []

    def _replace(match: "re.Match[str]") -> str:
        number = int(match.group(1))
        if number < 1 or number > len(contexts):
            if number not in unknown:
                unknown.append(number)
            return match.group(0)
        context = contexts[number - 1]
        confidence = similarity_to_confidence(context.similarity)
        if context.doc_id not in doc_index:
            doc_index[context.doc_id] = len(doc_index) + 1
            citations[context.doc_id] = Citation(
                index=doc_index[context.doc_id],
                chunk_id=context.chunk_id,
                doc_id=context.doc_id,
                doc_title=context.doc_title,
                snippet=_snippet(context.content),
                confidence=confidence,
            )
        elif confidence > citations[context.doc_id].confidence:
            citations[context.doc_id] = citations[context.doc_id].model_copy(update={"confidence": confidence})
        return f"[{doc_index[context.doc_id]}]"

    text = CITATION_PATTERN.sub(_replace, answer)
    # "[1][1]" after two chunks of one document collapsed
    text = re.sub(r"(\[\d+\])(?:\s*\1)+", r"\1", text)
    ordered = sorted(citations.values(), key=lambda citation: citation.index)
    return CitationExtraction(text=text, citations=ordered, unknown_references=unknown)


def overall_confidence(citations: Sequence[Citation]) -> float:
    if not citations:
        return 0.0
    value = sum(citation.confidence for citation in citations) / len(citations)
    return round(min(1.0, max(0.0, value)), 4)
