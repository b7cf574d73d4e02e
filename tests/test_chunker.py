"""
Tests for execution/counsel_rag/chunker.py

Covers: text cleaning, header detection, ChunkOptions validation,
        LegalChunker.chunk / chunk_legal (coverage, bounds, overlap,
        determinism, section tagging).
"""

import pytest


SENTENCE = "The Licensee shall comply with every obligation set out in this section. "


def _three_section_contract():
    """About 4,000 characters with three ALL-CAPS headers."""
    sections = []
    for header in ("DEFINITIONS", "PAYMENT TERMS", "TERMINATION"):
        sections.append(header + "\n\n" + SENTENCE * 18)
    return "\n\n".join(sections)


def _long_paragraph(sentences=40):
    return " ".join(
        f"Clause text number {i} covers the obligations of the parties in detail."
        for i in range(sentences)
    )


def _assert_covers(chunks, cleaned):
    assert chunks[0].start_char == 0
    assert chunks[-1].end_char == len(cleaned)
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.start_char <= prev.end_char
        assert cur.start_char > prev.start_char


# ---------------------------------------------------------------------------
# Text utilities
# ---------------------------------------------------------------------------

class TestCleanText:

    def test_normalizes_whitespace(self):
        from execution.counsel_rag.chunker import clean_text
        raw = "  Line one\r\nLine\t\ttwo   here \n\n\n\nLine three  "
        assert clean_text(raw) == "Line one\nLine two here\n\nLine three"

    def test_empty(self):
        from execution.counsel_rag.chunker import clean_text
        assert clean_text("") == ""
        assert clean_text("   \n\n  ") == ""


class TestHelpers:

    def test_estimate_tokens(self):
        from execution.counsel_rag.chunker import estimate_tokens
        assert estimate_tokens("abcd" * 10) == 10
        assert estimate_tokens("abcde") == 2

    def test_optimal_chunk_size_is_clamped(self):
        from execution.counsel_rag.chunker import calculate_optimal_chunk_size
        assert calculate_optimal_chunk_size(100) == 500
        assert calculate_optimal_chunk_size(20_000) == 1000
        assert calculate_optimal_chunk_size(1_000_000) == 3000


class TestHeaderDetection:

    def test_numbered_header(self):
        from execution.counsel_rag.chunker import detect_section_header
        assert detect_section_header("1.1 Definitions of terms\nBody text.") == "1.1 Definitions of terms"

    def test_all_caps_header(self):
        from execution.counsel_rag.chunker import detect_section_header
        assert detect_section_header("LIMITATION OF LIABILITY\nThe cap is...") == "LIMITATION OF LIABILITY"

    def test_markdown_header(self):
        from execution.counsel_rag.chunker import detect_section_header
        assert detect_section_header("## Payment\nFees are due.") == "Payment"

    def test_keyword_header(self):
        from execution.counsel_rag.chunker import detect_section_header
        assert detect_section_header("Schedule A\nList of assets") == "Schedule A"

    def test_only_first_three_lines(self):
        from execution.counsel_rag.chunker import detect_section_header
        content = "plain line one\nplain line two\nplain line three\nTERMINATION"
        assert detect_section_header(content) is None

    def test_find_section_headers_offsets(self):
        from execution.counsel_rag.chunker import find_section_headers
        text = "INTRODUCTION\nSome text.\nARTICLE 2 Payment\nMore text."
        headers = find_section_headers(text)
        assert [h for _, h in headers] == ["INTRODUCTION", "ARTICLE 2 Payment"]
        assert text[headers[1][0]:].startswith("ARTICLE 2")


class TestChunkOptions:

    def test_defaults(self):
        from execution.counsel_rag.chunker import ChunkOptions
        opts = ChunkOptions()
        assert opts.chunk_size == 1500
        assert opts.chunk_overlap == 200
        assert opts.min_chunk_size == 100
        assert opts.max_chunk_length == 1800

    @pytest.mark.parametrize("kwargs", [
        {"chunk_size": 0},
        {"chunk_size": 100, "chunk_overlap": 100},
        {"chunk_overlap": -1},
        {"min_chunk_size": -5},
    ])
    def test_invalid_options_rejected(self, kwargs):
        from execution.counsel_rag.chunker import ChunkOptions
        with pytest.raises(ValueError):
            ChunkOptions(**kwargs)


# ---------------------------------------------------------------------------
# LegalChunker.chunk
# ---------------------------------------------------------------------------

class TestChunk:

    def test_empty_text(self):
        from execution.counsel_rag.chunker import LegalChunker
        assert LegalChunker().chunk("") == []

    def test_short_document_single_chunk(self):
        from execution.counsel_rag.chunker import LegalChunker, clean_text
        text = "Short agreement.\n\nThe parties agree to the terms below."
        chunks = LegalChunker().chunk(text)
        assert len(chunks) == 1
        assert chunks[0].content == clean_text(text)
        assert chunks[0].is_first and chunks[0].is_last
        assert chunks[0].start_char == 0

    def test_long_paragraph_coverage_and_bounds(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions, clean_text
        opts = ChunkOptions(chunk_size=500, chunk_overlap=100, min_chunk_size=50)
        text = _long_paragraph()
        cleaned = clean_text(text)

        chunks = LegalChunker(opts).chunk(text)

        assert len(chunks) > 1
        _assert_covers(chunks, cleaned)
        for chunk in chunks:
            assert chunk.content == cleaned[chunk.start_char:chunk.end_char]
            assert len(chunk.content) <= opts.max_chunk_length
        for chunk in chunks[:-1]:
            assert len(chunk.content) >= opts.min_chunk_size

    def test_chunks_overlap(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        opts = ChunkOptions(chunk_size=500, chunk_overlap=100, min_chunk_size=50)
        chunks = LegalChunker(opts).chunk(_long_paragraph())
        for prev, cur in zip(chunks, chunks[1:]):
            assert cur.start_char < prev.end_char
            assert prev.end_char - cur.start_char <= opts.chunk_overlap

    def test_no_overlap_when_disabled(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        opts = ChunkOptions(chunk_size=500, chunk_overlap=0, min_chunk_size=50)
        chunks = LegalChunker(opts).chunk(_long_paragraph())
        for prev, cur in zip(chunks, chunks[1:]):
            assert cur.start_char == prev.end_char

    def test_unbroken_text_falls_back_to_fixed_width(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        opts = ChunkOptions(chunk_size=300, chunk_overlap=0, min_chunk_size=10)
        text = "x" * 1000
        chunks = LegalChunker(opts).chunk(text)
        assert "".join(c.content for c in chunks) == text
        assert all(len(c.content) <= 300 for c in chunks[:-1])

    def test_deterministic(self, sample_document_text):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        opts = ChunkOptions(chunk_size=500, chunk_overlap=80, min_chunk_size=100)
        first = [c.to_dict() for c in LegalChunker(opts).chunk(sample_document_text)]
        second = [c.to_dict() for c in LegalChunker(opts).chunk(sample_document_text)]
        assert first == second

    def test_indices_and_flags(self, sample_document_text):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        chunks = LegalChunker(ChunkOptions(chunk_size=400, chunk_overlap=50)).chunk(sample_document_text)
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert chunks[0].is_first and not chunks[0].is_last
        assert chunks[-1].is_last and not chunks[-1].is_first
        assert all(c.token_count > 0 for c in chunks)


# ---------------------------------------------------------------------------
# LegalChunker.chunk_legal
# ---------------------------------------------------------------------------

class TestChunkLegal:

    def test_three_all_caps_sections(self):
        from execution.counsel_rag.chunker import LegalChunker, clean_text
        text = _three_section_contract()
        cleaned = clean_text(text)
        assert 3800 <= len(cleaned) <= 4200

        chunks = LegalChunker().chunk_legal(text)

        assert len(chunks) == 3
        headers = ["DEFINITIONS", "PAYMENT TERMS", "TERMINATION"]
        for chunk, header in zip(chunks, headers):
            assert chunk.section_header == header
            assert chunk.content.startswith(header)
            assert chunk.content == cleaned[chunk.start_char:chunk.end_char]
        _assert_covers(chunks, cleaned)

    def test_sections_do_not_overlap(self):
        from execution.counsel_rag.chunker import LegalChunker
        chunks = LegalChunker().chunk_legal(_three_section_contract())
        for prev, cur in zip(chunks, chunks[1:]):
            assert cur.start_char == prev.end_char

    def test_long_section_is_split_and_tagged(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions, clean_text
        text = "DEFINITIONS\n\n" + SENTENCE * 5 + "\n\nOBLIGATIONS\n\n" + SENTENCE * 30
        opts = ChunkOptions(chunk_size=600, chunk_overlap=100, min_chunk_size=100)

        chunks = LegalChunker(opts).chunk_legal(text)

        assert chunks[0].section_header == "DEFINITIONS"
        obligation_chunks = [c for c in chunks if c.section_header == "OBLIGATIONS"]
        assert len(obligation_chunks) >= 3
        assert all(len(c.content) <= opts.max_chunk_length for c in chunks)
        _assert_covers(chunks, clean_text(text))

    def test_small_section_joins_next(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        text = "PARTIES\n\nA and B.\n\nTERMS\n\n" + SENTENCE * 12 + "\n\nNOTICES\n\n" + SENTENCE * 12
        opts = ChunkOptions(chunk_size=1000, chunk_overlap=100, min_chunk_size=100)

        chunks = LegalChunker(opts).chunk_legal(text)

        assert chunks[0].content.startswith("PARTIES")
        assert "TERMS" in chunks[0].content
        assert chunks[0].section_header == "PARTIES"

    def test_without_headers_matches_chunk(self):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        opts = ChunkOptions(chunk_size=500, chunk_overlap=100, min_chunk_size=50)
        text = _long_paragraph()
        chunker = LegalChunker(opts)
        assert [c.to_dict() for c in chunker.chunk_legal(text)] == [c.to_dict() for c in chunker.chunk(text)]

    def test_sample_contract_headers(self, sample_document_text):
        from execution.counsel_rag.chunker import LegalChunker, ChunkOptions
        chunks = LegalChunker(ChunkOptions(chunk_size=600, chunk_overlap=100)).chunk_legal(sample_document_text)
        assert chunks[0].section_header == "SOFTWARE LICENSE AGREEMENT"
        assert any(c.section_header and "TERMINATION" in c.section_header for c in chunks)

    def test_from_settings(self, settings):
        from execution.counsel_rag.chunker import LegalChunker
        chunker = LegalChunker.from_settings(settings)
        assert chunker.options.chunk_size == settings.chunk_size
        assert chunker.options.chunk_overlap == settings.chunk_overlap
