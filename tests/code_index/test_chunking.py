"""Tests for CodeChunker and the line-based splitter.

Covers syntax-aware extraction, size bounds, fallback chunking, and the
guarantee that line splitting never loses or duplicates a line.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from code_index.schemas.blocks import (
    FALLBACK_BLOCK_TYPE,
    MAX_BLOCK_CHARS,
    MAX_CHARS_TOLERANCE_FACTOR,
    MIN_BLOCK_CHARS,
    content_hash,
)
from code_index.schemas.vectors import VectorRecord
from code_index.services.chunking import CodeChunker, chunk_text_by_lines, file_hash
from tests.code_index.fakes import python_function


class TestSyntaxChunking:
    def test_extracts_function_definitions(self, chunker: CodeChunker) -> None:
        source = python_function('alpha') + '\n\n' + python_function('beta')
        blocks = chunker.parse('/ws/mod.py', source)

        assert [block.identifier for block in blocks] == ['alpha', 'beta']
        assert all(block.block_type == 'function_definition' for block in blocks)
        assert blocks[0].start_line == 1
        assert blocks[1].start_line > blocks[0].end_line

    def test_block_metadata(self, chunker: CodeChunker) -> None:
        source = python_function('alpha')
        (block,) = chunker.parse('/ws/mod.py', source)

        assert block.file_path == '/ws/mod.py'
        assert block.file_hash == file_hash(source)
        assert block.content_hash == content_hash('/ws/mod.py', block.start_line, block.end_line, block.content)
        assert block.content == source.rstrip('\n')

    def test_small_definitions_are_dropped(self, chunker: CodeChunker) -> None:
        source = 'def tiny():\n    return 1\n\n\n' + python_function('alpha')
        blocks = chunker.parse('/ws/mod.py', source)

        assert [block.identifier for block in blocks] == ['alpha']

    def test_oversized_class_is_split_into_methods(self, chunker: CodeChunker) -> None:
        methods = '\n'.join(
            '    ' + line if line else line
            for i in range(6)
            for line in python_function(f'method_{i}').replace('(argument)', '(self, argument)').split('\n')
        )
        source = f'class Large:\n{methods}\n'
        assert len(source) > MAX_BLOCK_CHARS * MAX_CHARS_TOLERANCE_FACTOR

        blocks = chunker.parse('/ws/large.py', source)

        assert blocks
        assert all(len(block.content) <= MAX_BLOCK_CHARS * MAX_CHARS_TOLERANCE_FACTOR for block in blocks)
        assert {f'method_{i}' for i in range(6)} <= {block.identifier for block in blocks}

    def test_decorated_definition_keeps_name(self, chunker: CodeChunker) -> None:
        source = '@decorator\n' + python_function('decorated')
        (block,) = chunker.parse('/ws/mod.py', source)

        assert block.block_type == 'decorated_definition'
        assert block.identifier == 'decorated'

    def test_unsupported_extension_yields_nothing(self, chunker: CodeChunker) -> None:
        assert chunker.parse('/ws/README.md', 'x' * 500) == []


class TestFallbackChunking:
    def test_module_without_definitions_uses_lines(self, chunker: CodeChunker) -> None:
        source = '\n'.join(f'CONSTANT_{i} = {i} * 1000 + offset' for i in range(20))
        blocks = chunker.parse('/ws/constants.py', source)

        assert blocks
        assert all(block.block_type == FALLBACK_BLOCK_TYPE for block in blocks)
        assert all(MIN_BLOCK_CHARS <= len(block.content) <= MAX_BLOCK_CHARS for block in blocks)

    def test_extension_without_grammar_uses_lines(self, chunker: CodeChunker) -> None:
        source = '\n'.join(f'key_{i} = "value number {i}"' for i in range(30))
        blocks = chunker.parse('/ws/settings.toml', source)

        assert blocks
        assert blocks[0].start_line == 1
        assert all(block.block_type == FALLBACK_BLOCK_TYPE for block in blocks)

    def test_tiny_file_yields_nothing(self, chunker: CodeChunker) -> None:
        assert chunker.parse('/ws/tiny.toml', 'a = 1\n') == []

    async def test_parse_file_reads_from_disk(self, chunker: CodeChunker, tmp_path: Path) -> None:
        path = tmp_path / 'mod.py'
        path.write_text(python_function('from_disk'))

        blocks = await chunker.parse_file(path)

        assert [block.identifier for block in blocks] == ['from_disk']


class TestChunkTextByLines:
    @pytest.mark.parametrize('line_length', [10, 45, 120, 400])
    def test_every_line_in_exactly_one_chunk(self, line_length: int) -> None:
        lines = [f'{i:04d}' + 'x' * line_length for i in range(80)]
        blocks = chunk_text_by_lines(
            lines, file_path='/ws/f.txt', file_hash='h', base_start_line=1, block_type=FALLBACK_BLOCK_TYPE
        )

        covered = [line for block in blocks for line in range(block.start_line, block.end_line + 1)]
        assert covered == list(range(1, len(lines) + 1))
        assert '\n'.join(block.content for block in blocks) == '\n'.join(lines)

    def test_chunks_respect_max_chars(self) -> None:
        lines = ['y' * 90 for _ in range(50)]
        blocks = chunk_text_by_lines(
            lines, file_path='/ws/f.txt', file_hash='h', base_start_line=1, block_type=FALLBACK_BLOCK_TYPE
        )

        assert len(blocks) > 1
        assert all(len(block.content) <= MAX_BLOCK_CHARS for block in blocks)

    def test_avoids_tiny_tail(self) -> None:
        # A greedy split after 10 lines would leave a 181-char tail
        lines = ['z' * 90 for _ in range(12)]
        blocks = chunk_text_by_lines(
            lines, file_path='/ws/f.txt', file_hash='h', base_start_line=1, block_type=FALLBACK_BLOCK_TYPE
        )

        assert len(blocks) == 2
        assert all(len(block.content) >= 200 for block in blocks)
        assert blocks[0].end_line + 1 == blocks[1].start_line

    def test_line_numbers_offset_by_base(self) -> None:
        lines = ['w' * 60 for _ in range(5)]
        (block,) = chunk_text_by_lines(
            lines, file_path='/ws/f.txt', file_hash='h', base_start_line=41, block_type='function_definition'
        )

        assert (block.start_line, block.end_line) == (41, 45)
        assert block.block_type == 'function_definition'

    def test_overlong_line_is_split_into_bounded_pieces(self) -> None:
        minified = 'm' * 2500
        lines = ['a' * 90] * 5 + [minified] + ['b' * 90] * 5
        blocks = chunk_text_by_lines(
            lines, file_path='/ws/app.min.js', file_hash='h', base_start_line=1, block_type=FALLBACK_BLOCK_TYPE
        )

        assert all(MIN_BLOCK_CHARS <= len(block.content) <= MAX_BLOCK_CHARS for block in blocks)
        pieces = [block for block in blocks if block.start_line == 6]
        assert [(block.end_line, block.segment) for block in pieces] == [(6, 0), (6, 1), (6, 2)]
        assert ''.join(block.content for block in pieces) == minified
        assert (blocks[0].start_line, blocks[0].end_line) == (1, 5)
        assert (blocks[-1].start_line, blocks[-1].end_line) == (7, 11)

    def test_pieces_of_one_line_get_distinct_ids(self) -> None:
        blocks = chunk_text_by_lines(
            ['q' * 3000], file_path='/ws/app.min.js', file_hash='h', base_start_line=1, block_type=FALLBACK_BLOCK_TYPE
        )

        ids = {VectorRecord.from_block(block, [1.0], '/ws').id for block in blocks}
        assert len(blocks) == 3
        assert len(ids) == 3
