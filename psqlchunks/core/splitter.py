"""
Split SQL files into chunks.

A chunk starts with a header: a line made of at least four dashes, the
comment lines describing the chunk and, optionally, a closing dash line.

    ----------------------------------
    -- create the customers table
    ----------------------------------
    create table customers (id int);

Everything up to the next header is the chunk's SQL. Blocks without any SQL
(blank or comment-only) are dropped.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Union

from psqlchunks.models import Chunk

logger = logging.getLogger(__name__)

SEPARATOR_RE = re.compile(r"^\s*-{4,}\s*$")
COMMENT_RE = re.compile(r"^\s*--(.*)$")


def _lines(text: str) -> list[str]:
    """Split on newlines only, keeping them. Form feeds and the like stay inside a line."""
    lines = re.split(r"(?<=\n)", text)
    if lines and not lines[-1]:
        lines.pop()
    return lines


def _is_sql(line: str) -> bool:
    return bool(line.strip()) and not COMMENT_RE.match(line)


class _ChunkBuilder:
    def __init__(self) -> None:
        self.chunks: list[Chunk] = []
        self.block: list[str] = []
        self.description: list[str] = []
        self.body_start = 1
        self.in_header = False

    def flush(self) -> None:
        if any(_is_sql(line) for line in self.block):
            self.chunks.append(
                Chunk(
                    start_line=self.body_start,
                    end_line=self.body_start + len(self.block) - 1,
                    sql="".join(self.block),
                    description=" ".join(self.description),
                )
            )
        self.block = []
        self.description = []

    def separator(self, lineno: int) -> None:
        if self.in_header:
            # closing line of the header, the comments above are not sql
            self.block = []
            self.in_header = False
        else:
            self.flush()
            self.in_header = True
        self.body_start = lineno + 1

    def line(self, line: str) -> None:
        if self.in_header:
            m = COMMENT_RE.match(line)
            if m is None:
                self.in_header = False
            elif m.group(1).strip():
                self.description.append(m.group(1).strip())
        self.block.append(line)


def split_chunks(text: str) -> list[Chunk]:
    """Split a document into chunks with absolute, 1-based line ranges."""
    builder = _ChunkBuilder()
    for lineno, line in enumerate(_lines(text), start=1):
        if SEPARATOR_RE.match(line):
            builder.separator(lineno)
        else:
            builder.line(line)
    builder.flush()

    logger.debug(f"split document into {len(builder.chunks)} chunks")
    return builder.chunks


def read_chunks(path: Union[str, Path], encoding: str = "utf-8") -> list[Chunk]:
    """Read and split a file. ``-`` reads from stdin."""
    if str(path) == "-":
        return split_chunks(sys.stdin.read())
    return split_chunks(Path(path).read_text(encoding=encoding))
