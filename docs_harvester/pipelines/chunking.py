"""Fragment splitting and optimization."""

import logging
import re
import string
from typing import Dict, List, Optional, Tuple

from .scraper.base import DocumentChunk

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT = re.compile(r"\n+")
_LAST_SENTENCE = re.compile(r"[.!?][^.!?]*$")
_MARKDOWN_HEADING = re.compile(r"^#{1,2}\s+", re.MULTILINE)
_PUNCTUATION = re.compile(f"[{re.escape(string.punctuation)}]")
_WHITESPACE = re.compile(r"\s+")


def _overlap_tail(chunk: str, overlap: int) -> str:
    """Text carried from a closed chunk into the next one."""
    match = _LAST_SENTENCE.search(chunk)
    if match and match.start() > len(chunk) - overlap:
        return chunk[match.start() + 1 :].strip()

    words = chunk.split()
    if len(words) > 10:
        return " ".join(words[-5:])
    return ""


def _hard_split(paragraph: str, max_size: int, min_size: int, overlap: int) -> List[str]:
    """Split a paragraph longer than max_size, preferring sentence boundaries.

    Every piece but the last is at least min_size long.
    """
    pieces = []
    start = 0
    while len(paragraph) - start > max_size:
        end = start + max_size
        cut = end
        match = _LAST_SENTENCE.search(paragraph, start, end)
        if match and match.start() + 1 - start >= min_size:
            cut = match.start() + 1
        pieces.append(paragraph[start:cut].strip())
        next_start = cut - overlap
        start = next_start if next_start > start else cut
    pieces.append(paragraph[start:].strip())
    return [p for p in pieces if p]


def split_into_chunks(
    text: str,
    max_size: int = 2000,
    min_size: int = 200,
    overlap: int = 100,
) -> List[str]:
    """Split text into bounded, overlap-preserving fragments.

    Paragraphs are packed greedily while ``len(current) + len(paragraph)``
    stays within ``max_size``. Oversized paragraphs are hard-split at sentence
    ends. When a fragment is closed, a short tail (last sentence or last few
    words) is carried into the next one.

    No fragment shorter than ``min_size`` is emitted unless it is the only one:
    an undersized fragment keeps absorbing paragraphs, and an undersized tail
    is merged into the previous fragment.
    """
    if not text or not text.strip():
        return []

    min_size = min(min_size, max_size)
    paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]

    chunks: List[str] = []
    current = ""

    for paragraph in paragraphs:
        if len(paragraph) > max_size:
            if current and len(current) < min_size:
                paragraph = f"{current}\n{paragraph}"
            elif current:
                chunks.append(current.strip())
            current = ""

            pieces = _hard_split(paragraph, max_size, min_size, overlap)
            chunks.extend(pieces[:-1])
            current = pieces[-1]
            continue

        if current and len(current) + len(paragraph) > max_size:
            if len(current) >= min_size:
                chunks.append(current.strip())
                current = _overlap_tail(current, overlap)
            # Undersized fragments keep absorbing
            current = f"{current}\n{paragraph}" if current else paragraph
            continue

        current = f"{current}\n{paragraph}" if current else paragraph

    current = current.strip()
    if current:
        if len(current) >= min_size or not chunks:
            chunks.append(current)
        else:
            chunks[-1] = f"{chunks[-1]}\n{current}"

    return chunks


def split_markdown_sections(
    content: str, default_title: str, min_length: int = 20
) -> List[Tuple[str, str]]:
    """Split markdown on level 1-2 headings into (title, body) pairs.

    Sections shorter than ``min_length`` are dropped. The first line of each
    section is its title; the preamble before the first heading uses
    ``default_title``.
    """
    if not content or len(content.strip()) < min_length:
        return []

    sections: List[Tuple[str, str]] = []
    parts = _MARKDOWN_HEADING.split(content)
    starts_with_heading = bool(_MARKDOWN_HEADING.match(content))

    for i, raw in enumerate(parts):
        section = raw.strip()
        if len(section) < min_length:
            continue

        is_preamble = i == 0 and not starts_with_heading
        title = default_title
        body = section
        if not is_preamble:
            first_break = section.find("\n")
            if first_break > 0:
                title = section[:first_break].strip() or default_title
                body = section[first_break + 1 :].strip()
            else:
                title = section
        sections.append((title, body or section))

    return sections


def normalize_prefix(content: str, length: int = 100) -> str:
    """Lower-case, strip punctuation, collapse whitespace, then cut to length."""
    normalized = _PUNCTUATION.sub("", content.lower())
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    return normalized[:length]


class ChunkOptimizer:
    """Merges undersized or same-page fragments and drops near-duplicates.

    Same-page fragments are only joined while the result stays within
    ``max_size``.
    ``optimize`` is idempotent: merge and dedupe repeat until nothing changes.
    """

    def __init__(
        self, min_size: int = 20, prefix_length: int = 100, max_size: Optional[int] = 2000
    ):
        self.min_size = min_size
        self.prefix_length = prefix_length
        self.max_size = max_size

    def optimize(self, chunks: List[DocumentChunk]) -> List[DocumentChunk]:
        if not chunks:
            return []

        current = [chunk.model_copy(deep=True) for chunk in chunks]
        # Each pass that changes anything removes at least one fragment
        for _ in range(len(current) + 1):
            optimized = self._deduplicate(self._merge_groups(current))
            changed = len(optimized) != len(current)
            current = optimized
            if not changed:
                break

        if len(current) != len(chunks):
            logger.info(f"Optimized {len(chunks)} fragments into {len(current)}")
        return current

    def _merge_groups(self, chunks: List[DocumentChunk]) -> List[DocumentChunk]:
        groups: Dict[Tuple[str, str], List[DocumentChunk]] = {}
        for chunk in chunks:
            groups.setdefault((chunk.source, chunk.category), []).append(chunk)

        merged: List[DocumentChunk] = []
        for group in groups.values():
            group.sort(key=lambda c: c.created_at)
            merged.extend(self._merge_adjacent(group))
        return merged

    def _should_merge(self, left: DocumentChunk, right: DocumentChunk) -> bool:
        if len(left.content) < self.min_size or len(right.content) < self.min_size:
            return True
        if left.title != right.title or left.url != right.url:
            return False
        # Joined with a blank line
        return self.max_size is None or len(left.content) + len(right.content) + 2 <= self.max_size

    def _merge_adjacent(self, group: List[DocumentChunk]) -> List[DocumentChunk]:
        result: List[DocumentChunk] = []
        current: Optional[DocumentChunk] = None

        for chunk in group:
            if current is None:
                current = chunk
                continue
            if self._should_merge(current, chunk):
                current = current.model_copy(
                    update={
                        "content": f"{current.content}\n\n{chunk.content}",
                        "metadata": {
                            **current.metadata,
                            "merged_with": [
                                *current.metadata.get("merged_with", []),
                                chunk.id,
                            ],
                        },
                    }
                )
            else:
                result.append(current)
                current = chunk

        if current is not None:
            result.append(current)
        return result

    def _deduplicate(self, chunks: List[DocumentChunk]) -> List[DocumentChunk]:
        seen = set()
        unique: List[DocumentChunk] = []
        for chunk in chunks:
            key = normalize_prefix(chunk.content, self.prefix_length)
            if key in seen:
                logger.debug(f"Dropping duplicate fragment {chunk.id}")
                continue
            seen.add(key)
            unique.append(chunk)
        return unique
