# ==============================================================================
# Output Chunker
# ==============================================================================
"""
Split report text into a bounded sequence of size-limited chunks.

Content is a list of logical items (usually one line per member). Items are
packed greedily, in order, joined by newlines, so joining the payloads of all
chunks with a newline gives back the original text. Limits:

- ``max_items`` items per chunk
- ``max_bytes`` UTF-8 bytes per chunk; a single larger item is truncated and
  ends with ``TRUNCATION_MARKER``
- above ``hard_ceiling_bytes`` of total content, one attachment chunk replaces
  the message sequence
"""

import csv
import io
import json
import logging

from presence.core.errors import ChunkingError
from presence.core.models import AttachmentFormat, Chunk, ChunkKind, ChunkLimits, Violation

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "…[truncated]"
SEPARATOR = "\n"


def _size(text: str) -> int:
    return len(text.encode("utf-8"))


def truncate_item(item: str, max_bytes: int) -> str:
    """Cut ``item`` to ``max_bytes`` UTF-8 bytes including the truncation marker."""
    encoded = item.encode("utf-8")
    if len(encoded) <= max_bytes:
        return item
    keep = max(0, max_bytes - _size(TRUNCATION_MARKER))
    # Drop a multi-byte character split by the cut
    return encoded[:keep].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


def total_size(items: list[str]) -> int:
    """Bytes of the items joined by the separator."""
    if not items:
        return 0
    return sum(_size(item) for item in items) + _size(SEPARATOR) * (len(items) - 1)


def join_chunks(chunks: list[Chunk]) -> str:
    """Reassemble message chunks (or return the attachment payload)."""
    ordered = sorted(chunks, key=lambda c: c.chunk_index)
    return SEPARATOR.join(chunk.payload for chunk in ordered)


class OutputChunker:
    """
    Chunker bound to a default set of delivery limits.

    Args:
        limits: Default limits used when ``chunk``/``validate`` get none
    """

    def __init__(self, limits: ChunkLimits | None = None):
        self.limits = limits or ChunkLimits()

    def chunk(
        self,
        items: list[str],
        limits: ChunkLimits | None = None,
        filename: str = "report",
    ) -> list[Chunk]:
        """
        Split items into chunks satisfying ``limits``.

        Args:
            items: Logical content items, in delivery order
            limits: Size limits (defaults to the chunker's limits)
            filename: Base name for an attachment fallback

        Returns:
            Chunks with consecutive ``chunk_index`` and identical ``total_chunks``

        Raises:
            ChunkingError: Content exceeds even the attachment size limit
        """
        limits = limits or self.limits
        if not items:
            return []

        if total_size(items) > limits.hard_ceiling_bytes:
            return [self._attachment(items, limits, filename)]

        groups: list[list[str]] = []
        current: list[str] = []
        current_bytes = 0
        separator_bytes = _size(SEPARATOR)

        for raw in items:
            item = truncate_item(raw, limits.max_bytes)
            item_bytes = _size(item)
            added = item_bytes + (separator_bytes if current else 0)
            if current and (
                len(current) >= limits.max_items or current_bytes + added > limits.max_bytes
            ):
                groups.append(current)
                current, current_bytes = [], 0
                added = item_bytes
            current.append(item)
            current_bytes += added

        if current:
            groups.append(current)

        total = len(groups)
        chunks = []
        for index, group in enumerate(groups):
            payload = SEPARATOR.join(group)
            chunks.append(
                Chunk(
                    chunk_index=index,
                    total_chunks=total,
                    payload=payload,
                    size_bytes=_size(payload),
                    item_count=len(group),
                )
            )
        logger.debug("Split %d items into %d chunks", len(items), total)
        return chunks

    def validate(self, items: list[str], limits: ChunkLimits | None = None) -> list[Violation]:
        """
        Report how ``items`` relate to ``limits`` without chunking.

        Warnings describe content the chunker will adapt (split, truncate,
        attach). Errors describe content it cannot deliver.
        """
        limits = limits or self.limits
        violations: list[Violation] = []

        for index, item in enumerate(items):
            size = _size(item)
            if size > limits.max_bytes:
                violations.append(
                    Violation(kind="item_bytes", current=size, limit=limits.max_bytes, index=index)
                )

        if len(items) > limits.max_items:
            violations.append(
                Violation(kind="items", current=len(items), limit=limits.max_items)
            )

        size = total_size(items)
        if size > limits.hard_ceiling_bytes:
            violations.append(
                Violation(kind="total_bytes", current=size, limit=limits.hard_ceiling_bytes)
            )
        if size > limits.attachment_max_bytes:
            violations.append(
                Violation(
                    kind="attachment_bytes",
                    current=size,
                    limit=limits.attachment_max_bytes,
                    severity="error",
                )
            )
        return violations

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _attachment(self, items: list[str], limits: ChunkLimits, filename: str) -> Chunk:
        fmt = limits.attachment_format
        if fmt is AttachmentFormat.JSON:
            payload = json.dumps(items, ensure_ascii=False, indent=2)
        elif fmt is AttachmentFormat.CSV:
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(["line"])
            writer.writerows([item] for item in items)
            payload = buffer.getvalue()
        else:
            payload = SEPARATOR.join(items)

        size = _size(payload)
        if size > limits.attachment_max_bytes:
            raise ChunkingError(
                f"content is {size} bytes, above the attachment limit of "
                f"{limits.attachment_max_bytes} bytes"
            )
        logger.info("Content of %d items exceeds ceiling, sending as %s attachment", len(items), fmt.value)
        return Chunk(
            chunk_index=0,
            total_chunks=1,
            payload=payload,
            size_bytes=size,
            item_count=len(items),
            kind=ChunkKind.ATTACHMENT,
            filename=f"{filename}.{fmt.value}",
        )
