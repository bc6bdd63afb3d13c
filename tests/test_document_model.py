"""Unit tests for :mod:`notelink.editor.document_model`."""

from __future__ import annotations

import pytest

from notelink.editor.document_model import Block, DocumentState, InlineContent, find_marker_offsets


class TestMarkerSearch:
    """Tests for whole-word, case-insensitive marker matching."""

    def test_finds_every_occurrence(self) -> None:
        assert find_marker_offsets("a @link b @LINK c", "@link") == [2, 10]

    def test_ignores_marker_inside_longer_word(self) -> None:
        """Markers glued to word characters do not count."""
        assert find_marker_offsets("see @linked and x@link", "@link") == []

    def test_empty_marker_matches_nothing(self) -> None:
        assert find_marker_offsets("anything", "") == []


class TestBlock:
    """Tests for block text editing."""

    def test_replace_text_splits_runs(self) -> None:
        block = Block.paragraph("need a @link here")
        block.replace_text(7, 12, [InlineContent("Roadmap", href="/dashboard/p2")])

        assert block.text == "need a Roadmap here"
        assert [item.href for item in block.content] == [None, "/dashboard/p2", None]

    def test_replace_text_merges_plain_runs(self) -> None:
        block = Block.paragraph("hello")
        block.replace_text(5, 5, [InlineContent(" world")])

        assert len(block.content) == 1
        assert block.text == "hello world"

    def test_replace_text_rejects_invalid_range(self) -> None:
        block = Block.paragraph("abc")
        with pytest.raises(ValueError):
            block.replace_text(2, 10, [])

    def test_round_trips_link_content(self) -> None:
        block = Block.paragraph("see ")
        block.content.append(InlineContent("Roadmap", href="/dashboard/p2"))
        restored = Block.from_dict(block.to_dict())

        assert restored == block


class TestDocumentState:
    """Tests for flattening and locating blocks."""

    def test_from_text_creates_one_paragraph_per_line(self) -> None:
        document = DocumentState.from_text("one\ntwo\nthree")
        assert [block.text for block in document.blocks] == ["one", "two", "three"]
        assert document.plain_text() == "one\ntwo\nthree"

    def test_nested_children_are_flattened_depth_first(self) -> None:
        parent = Block.paragraph("parent", children=[Block.paragraph("child")])
        document = DocumentState(blocks=[parent, Block.paragraph("after")])

        spans = document.block_spans()
        assert [span.block.text for span in spans] == ["parent", "child", "after"]
        assert [span.depth for span in spans] == [0, 1, 0]
        assert document.plain_text() == "parent\nchild\nafter"

    def test_locate_returns_enclosing_block(self) -> None:
        document = DocumentState.from_text("alpha\nbeta")
        span = document.locate(7)

        assert span is not None
        assert span.block.text == "beta"
        assert (span.start, span.end) == (6, 10)

    def test_locate_outside_document(self) -> None:
        assert DocumentState.from_text("abc").locate(99) is None

    def test_content_is_structurally_comparable(self) -> None:
        document = DocumentState.from_text("same")
        assert document.content() == document.clone().content()

    def test_touch_bumps_version(self) -> None:
        document = DocumentState.from_text("x")
        version = document.version_id
        document.touch()
        assert document.version_id == version + 1
