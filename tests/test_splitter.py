"""
Tests for splitting SQL documents into chunks.
"""

from __future__ import annotations

from psqlchunks.core.splitter import read_chunks, split_chunks
from psqlchunks.models import ChunkStatus

DOCUMENT = """\
-- file header, not sql
----------------------------------------
-- create the customers table
-- with a primary key
----------------------------------------
create table customers (
    id int primary key
);

----
-- seed customers
----
insert into customers values (1);
insert into customers values (2);
----------------------------------------
-- count customers
----------------------------------------
select count(*) from customers;
"""


class TestSplitChunks:
    def test_chunks_and_line_ranges(self) -> None:
        chunks = split_chunks(DOCUMENT)

        assert [(c.start_line, c.end_line) for c in chunks] == [(6, 9), (13, 14), (18, 18)]

    def test_descriptions(self) -> None:
        chunks = split_chunks(DOCUMENT)
        assert [c.description for c in chunks] == [
            "create the customers table with a primary key",
            "seed customers",
            "count customers",
        ]

    def test_sql_keeps_source_lines(self) -> None:
        first = split_chunks(DOCUMENT)[0]
        assert first.sql == "create table customers (\n    id int primary key\n);\n\n"

    def test_line_translation_is_absolute(self) -> None:
        doc = DOCUMENT.splitlines()
        for chunk in split_chunks(DOCUMENT):
            body = chunk.sql.splitlines()
            assert doc[chunk.start_line - 1 : chunk.end_line] == body

    def test_document_without_separators_is_one_chunk(self) -> None:
        chunks = split_chunks("select 1;\nselect 2;\n")
        assert len(chunks) == 1
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)
        assert chunks[0].description == ""

    def test_comment_only_blocks_are_dropped(self) -> None:
        assert split_chunks("-- nothing\n\n----\n-- still nothing\n") == []

    def test_new_chunks_are_not_run(self) -> None:
        assert all(
            c.diagnostics.status == ChunkStatus.NOT_RUN for c in split_chunks(DOCUMENT)
        )


def test_read_chunks_from_file(tmp_path) -> None:
    path = tmp_path / "schema.sql"
    path.write_text(DOCUMENT, encoding="utf-8")
    assert len(read_chunks(path)) == 3


def test_header_without_closing_separator() -> None:
    chunks = split_chunks("----\n-- drop old data\ndelete from t;\n")
    assert len(chunks) == 1
    assert chunks[0].description == "drop old data"
    assert (chunks[0].start_line, chunks[0].end_line) == (2, 3)
    assert chunks[0].sql == "-- drop old data\ndelete from t;\n"


class TestLineBreaks:
    """Only newline characters end a line, as in server error positions."""

    def test_form_feed_does_not_shift_later_chunks(self) -> None:
        text = "----\n-- a\n----\nselect '\x0c';\n----\n-- b\n----\nselct 2;\n"

        chunks = split_chunks(text)

        assert [(c.start_line, c.end_line) for c in chunks] == [(4, 4), (8, 8)]
        assert chunks[0].sql == "select '\x0c';\n"

    def test_unicode_separators_stay_inside_a_line(self) -> None:
        chunks = split_chunks("select 1;\n-- page\x0c break\u2028 more\x85\nselct 2;\n")
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 3)

    def test_last_line_without_newline(self) -> None:
        chunks = split_chunks("select 1;\r\nselect 2;")
        assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)
        assert chunks[0].sql == "select 1;\r\nselect 2;"
