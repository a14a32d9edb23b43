"""
Plain text reporting of chunk results.
"""

from __future__ import annotations

from typing import Iterable, Optional

from psqlchunks.models import (
    LINE_NUMBER_NOT_AVAILABLE,
    Chunk,
    ChunkStatus,
    RunOutcome,
)

STATUS_LABELS = {
    ChunkStatus.NOT_RUN: "SKIP",
    ChunkStatus.OK: "OK",
    ChunkStatus.FAIL: "FAIL",
}


def _describe(chunk: Chunk) -> str:
    return chunk.description or "(no description)"


def format_chunk_listing(chunk: Chunk) -> str:
    return f"lines {chunk.line_range:>11}  {_describe(chunk)}"


def format_chunk_result(chunk: Chunk, source: Optional[str] = None) -> str:
    """One summary line per chunk, followed by error details on failure."""
    diag = chunk.diagnostics
    label = STATUS_LABELS[diag.status]
    lines = [
        f"{label:<4} {diag.runtime_seconds:9.3f}s  lines {chunk.line_range:>11}  {_describe(chunk)}"
    ]
    if diag.status != ChunkStatus.FAIL:
        return lines[0]

    if diag.error_line is None:
        where = "unknown line"
    elif diag.error_line == LINE_NUMBER_NOT_AVAILABLE:
        where = "line not available"
    else:
        where = f"line {diag.error_line}"
    prefix = f"{source}: " if source else ""

    lines.append(f"     {prefix}{where}: {diag.sqlstate} {diag.msg_primary}".rstrip())
    if diag.msg_detail:
        lines.append(f"     DETAIL: {diag.msg_detail}")
    if diag.msg_hint:
        lines.append(f"     HINT: {diag.msg_hint}")
    return "\n".join(lines)


def format_summary(chunks: Iterable[Chunk], outcome: RunOutcome) -> str:
    chunks = list(chunks)
    ok = sum(1 for c in chunks if c.diagnostics.status == ChunkStatus.OK)
    failed = sum(1 for c in chunks if c.diagnostics.status == ChunkStatus.FAIL)
    total = sum((c.diagnostics.runtime_seconds for c in chunks), 0.0)
    return (
        f"{len(chunks)} chunks run, {ok} ok, {failed} failed in {total:.3f}s; "
        f"transaction {outcome.transaction.value.replace('_', ' ')}"
    )
