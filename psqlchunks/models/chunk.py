"""
Chunk Models

A chunk is one independently executable piece of a SQL file together with
the outcome of its last execution attempt.
"""

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# error_line value when the server did not report a statement position
LINE_NUMBER_NOT_AVAILABLE = -1


class ChunkStatus(str, Enum):
    """Outcome of a chunk execution attempt."""

    NOT_RUN = "not_run"
    OK = "ok"
    FAIL = "fail"


class Diagnostics(BaseModel):
    """
    Outcome of one execution attempt of a chunk.

    The error fields are only populated when ``status`` is ``FAIL``.
    ``error_line`` is ``LINE_NUMBER_NOT_AVAILABLE`` when the server reported
    no position, and ``None`` when the reported position could not be
    mapped onto the chunk's SQL text.
    """

    status: ChunkStatus = Field(ChunkStatus.NOT_RUN, description="Execution status")
    runtime: timedelta = Field(
        default_factory=timedelta, description="Duration of the execution attempt"
    )
    error_line: Optional[int] = Field(
        None, description="Absolute source line the server reported the error at"
    )
    sqlstate: str = Field("", description="SQLSTATE error code")
    msg_primary: str = Field("", description="Primary error message")
    msg_detail: str = Field("", description="Error detail message")
    msg_hint: str = Field("", description="Error hint message")

    @property
    def failed(self) -> bool:
        return self.status == ChunkStatus.FAIL

    @property
    def runtime_seconds(self) -> float:
        return self.runtime.total_seconds()


class Chunk(BaseModel):
    """A block of SQL text carved out of a larger source file."""

    start_line: int = Field(..., ge=1, description="First source line (1-based)")
    end_line: int = Field(..., ge=1, description="Last source line (inclusive)")
    sql: str = Field(..., description="Statement text sent to the server")
    description: str = Field("", description="Human readable label")
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)

    @property
    def line_range(self) -> str:
        return f"{self.start_line}-{self.end_line}"
