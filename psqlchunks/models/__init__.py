"""
Data models for psqlchunks.

This package contains Pydantic models for:
- Chunks and their per-execution diagnostics
- The overall outcome of a run
"""

from psqlchunks.models.chunk import (
    LINE_NUMBER_NOT_AVAILABLE,
    ChunkStatus,
    Diagnostics,
    Chunk,
)

from psqlchunks.models.run_result import (
    TransactionOutcome,
    RunOutcome,
)

__all__ = [
    # chunk
    "LINE_NUMBER_NOT_AVAILABLE",
    "ChunkStatus",
    "Diagnostics",
    "Chunk",
    # run_result
    "TransactionOutcome",
    "RunOutcome",
]
