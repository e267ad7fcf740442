import pytest

from tenant_rag.reranking import query_terms, rerank_contexts
from tenant_rag.schemas import RetrievedContext


def _context(chunk_id: str, content: str, similarity: float, chunk_index: int = 1) -> RetrievedContext:
    return RetrievedContext(
        chunk_id=chunk_id,
        doc_id=f"doc-{chunk_id}",
        doc_title="Report",
        content=content,
        chunk_index=chunk_index,
        similarity=similarity,
    )


def test_query_terms_drop_short_words_and_punctuation():
    assert query_terms("What was Q3 revenue?") == ["what", "was", "revenue"]


def test_term_overlap_lifts_a_lower_ranked_chunk():
    contexts = [
        _context("a", "Vacation policy is unchanged.", 0.80),
        _context("b", "Q3 revenue was $5M.", 0.78),
    ]

    ranked = rerank_contexts(contexts, "What was Q3 revenue?")

    assert [context.chunk_id for context in ranked] == ["b", "a"]
    assert ranked[0].similarity == pytest.approx(0.82)
    assert ranked[1].similarity == 0.80


def test_lead_chunk_boost_and_cap():
    contexts = [
        _context("a", "revenue revenue", 0.99, chunk_index=0),
        _context("b", "unrelated", 0.70, chunk_index=0),
    ]

    ranked = rerank_contexts(contexts, "revenue")

    assert ranked[0].similarity == 1.0
    assert ranked[1].similarity == pytest.approx(0.71)


def test_ties_keep_retrieval_order():
    contexts = [_context("a", "alpha", 0.8), _context("b", "beta", 0.8)]

    ranked = rerank_contexts(contexts, "gamma")

    assert [context.chunk_id for context in ranked] == ["a", "b"]
    assert contexts[0].similarity == 0.8
