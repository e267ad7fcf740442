"""Sentence-aware sliding window chunking."""
from __future__ import annotations

import re
import uuid
from typing import List, Optional, Tuple

from .schemas import Chunk

_SENTENCE_END = re.compile(r"[.!?][\"')\]]*\s+")
_CLAUSE_END = re.compile(r"[,;:]\s+")
_WHITESPACE = re.compile(r"\s+")

# Chunk ids are derived from (tenant, document, index) so re-chunking the same
# content yields the same ids.
_CHUNK_NAMESPACE = uuid.UUID("5b8f3a52-52c4-4c55-9a0e-6c1d2f0b7e41")


def resolve_chunk_params(chunk_size: int, overlap: Optional[int]) -> Tuple[int, int]:
    size = chunk_size
    overlap_value = 0 if overlap is None else overlap
    if size <= 0:
        size = 1
    if overlap_value < 0:
        overlap_value = 0
    if overlap_value >= size:
        overlap_value = max(size - 1, 0)
    return size, overlap_value


def chunk_id_for(tenant_id: str, doc_id: str, chunk_index: int) -> str:
    return str(uuid.uuid5(_CHUNK_NAMESPACE, f"{tenant_id}:{doc_id}:{chunk_index}"))


def _find_boundary(content: str, floor: int, end: int) -> int:
    """Return the best break position in ``content[floor:end]`` or ``end``."""

    window = content[floor:end]
    for pattern in (_SENTENCE_END, _CLAUSE_END, _WHITESPACE):
        matches = list(pattern.finditer(window))
        if matches:
            return floor + matches[-1].end()
    return end


def split_windows(content: str, chunk_size: int, chunk_overlap: int) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` offsets covering ``content``."""

    size, overlap = resolve_chunk_params(chunk_size, chunk_overlap)
    length = len(content)
    if not content.strip():
        return []
    if length <= size:
        return [(0, length)]

    lookback = max(size // 5, 1)
    windows: List[Tuple[int, int]] = []
    start = 0
    while start < length:
        end = min(start + size, length)
        if end < length:
            floor = max(start + overlap + 1, end - lookback)
            if floor < end:
                end = _find_boundary(content, floor, end)
        windows.append((start, end))
        if end >= length:
            break
        start = end - overlap
    return windows


def chunk_document(
    content: str,
    *,
    doc_id: str,
    tenant_id: str,
    doc_title: str,
    chunk_size: int,
    chunk_overlap: int,
) -> List[Chunk]:
    """Split ``content`` into chunks whose offsets index ``content`` itself.

    Blank windows are skipped, so whitespace-only content yields no chunks.
    """

    chunks: List[Chunk] = []
    for start, end in split_windows(content, chunk_size, chunk_overlap):
        text = content[start:end]
        if not text.strip():
            continue
        index = len(chunks)
        chunks.append(
            Chunk(
                id=chunk_id_for(tenant_id, doc_id, index),
                doc_id=doc_id,
                tenant_id=tenant_id,
                content=text,
                chunk_index=index,
                start_offset=start,
                end_offset=end,
                doc_title=doc_title,
            )
        )
    return chunks
