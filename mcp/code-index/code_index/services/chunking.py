"""Chunking service - splits source files into code blocks.

Strategy per file:
- Grammar available: outermost definition nodes from the tree-sitter parse,
  processed breadth-first. Nodes in size bounds become blocks; oversized nodes
  are replaced by their children, or split by lines when they have none.
- No grammar, or no definitions found: line-based chunking of the whole file.

Tree-sitter parsing is CPU-bound; parse_file() runs it in a worker thread.
"""

from __future__ import annotations

import asyncio
import collections
import hashlib
import logging
from collections.abc import Sequence, Set
from pathlib import Path

import tree_sitter

from code_index.schemas.blocks import (
    FALLBACK_BLOCK_TYPE,
    MAX_BLOCK_CHARS,
    MAX_CHARS_TOLERANCE_FACTOR,
    MIN_BLOCK_CHARS,
    MIN_CHUNK_REMAINDER_CHARS,
    CodeBlock,
    content_hash,
    is_supported_file,
)
from code_index.services.grammars import grammar_for_extension, new_parser

__all__ = [
    'CodeChunker',
    'chunk_text_by_lines',
    'file_hash',
]

logger = logging.getLogger(__name__)


def file_hash(content: str) -> str:
    """SHA256 of the file text, used for change detection."""
    return hashlib.sha256(content.encode()).hexdigest()


class CodeChunker:
    """Splits one file's text into CodeBlocks. Stateless and thread-safe."""

    def __init__(
        self,
        *,
        min_chars: int = MIN_BLOCK_CHARS,
        max_chars: int = MAX_BLOCK_CHARS,
        tolerance_factor: float = MAX_CHARS_TOLERANCE_FACTOR,
        min_remainder_chars: int = MIN_CHUNK_REMAINDER_CHARS,
    ) -> None:
        self._min_chars = min_chars
        self._max_chars = max_chars
        self._tolerance_factor = tolerance_factor
        self._min_remainder_chars = min_remainder_chars

    async def parse_file(self, file_path: str | Path) -> list[CodeBlock]:
        """Read a file as UTF-8 and chunk it in a worker thread.

        Raises:
            OSError: If the file can't be read.
            UnicodeDecodeError: If the file isn't valid UTF-8.
        """
        path = Path(file_path)
        if not is_supported_file(path):
            return []
        content = await asyncio.to_thread(path.read_text, encoding='utf-8')
        return await asyncio.to_thread(self.parse, str(file_path), content, file_hash(content))

    def parse(self, file_path: str, content: str, content_file_hash: str | None = None) -> list[CodeBlock]:
        """Chunk file content. Unsupported extensions yield no blocks."""
        if not is_supported_file(file_path):
            return []
        fhash = content_file_hash if content_file_hash is not None else file_hash(content)

        grammar = grammar_for_extension(Path(file_path).suffix)
        if grammar is None:
            return self._fallback(file_path, content, fhash)

        tree = new_parser(grammar).parse(content.encode())
        candidates = _outermost_nodes(tree.root_node, grammar.node_types)
        if not candidates:
            return self._fallback(file_path, content, fhash)

        blocks: list[CodeBlock] = []
        queue = collections.deque(candidates)
        while queue:
            node = queue.popleft()
            text = _node_text(node)
            if len(text) < self._min_chars:
                continue

            if len(text) > self._max_chars * self._tolerance_factor:
                if node.children:
                    queue.extend(node.children)
                else:
                    blocks.extend(
                        chunk_text_by_lines(
                            text.split('\n'),
                            file_path=file_path,
                            file_hash=fhash,
                            base_start_line=node.start_point.row + 1,
                            block_type=node.type,
                            min_chars=self._min_chars,
                            max_chars=self._max_chars,
                            min_remainder_chars=self._min_remainder_chars,
                        )
                    )
                continue

            start_line = node.start_point.row + 1
            end_line = node.end_point.row + 1
            blocks.append(
                CodeBlock(
                    file_path=file_path,
                    identifier=_identifier(node),
                    block_type=node.type,
                    start_line=start_line,
                    end_line=end_line,
                    content=text,
                    content_hash=content_hash(file_path, start_line, end_line, text),
                    file_hash=fhash,
                )
            )

        return blocks

    def _fallback(self, file_path: str, content: str, fhash: str) -> list[CodeBlock]:
        if len(content) < self._min_chars:
            return []
        return chunk_text_by_lines(
            content.split('\n'),
            file_path=file_path,
            file_hash=fhash,
            base_start_line=1,
            block_type=FALLBACK_BLOCK_TYPE,
            min_chars=self._min_chars,
            max_chars=self._max_chars,
            min_remainder_chars=self._min_remainder_chars,
        )


def chunk_text_by_lines(
    lines: Sequence[str],
    *,
    file_path: str,
    file_hash: str,
    base_start_line: int,
    block_type: str,
    min_chars: int = MIN_BLOCK_CHARS,
    max_chars: int = MAX_BLOCK_CHARS,
    min_remainder_chars: int = MIN_CHUNK_REMAINDER_CHARS,
) -> list[CodeBlock]:
    """Group consecutive lines into blocks of at most max_chars.

    Each line counts its length plus one newline, except the last line. When
    a chunk fills up and the text left after it would be a tiny tail (under
    min_remainder_chars), the split moves back to the latest line that keeps
    both sides big enough; lines after the split start the next chunk. Every
    line lands in exactly one chunk; chunks under min_chars are dropped.

    A single line longer than max_chars (minified code) becomes its own run of
    near-equal pieces, each at most max_chars, numbered by CodeBlock.segment.

    Args:
        lines: Text split on newlines.
        base_start_line: 1-based line number of lines[0] in the file.
        block_type: block_type for every produced block.
    """
    n = len(lines)
    # prefix[i] = total length of lines[:i]
    prefix = [0] * (n + 1)
    for i, line in enumerate(lines):
        prefix[i + 1] = prefix[i] + len(line) + (1 if i < n - 1 else 0)
    total = prefix[n]

    blocks: list[CodeBlock] = []

    def add(start_line: int, end_line: int, chunk: str, segment: int = 0) -> None:
        blocks.append(
            CodeBlock(
                file_path=file_path,
                block_type=block_type,
                start_line=start_line,
                end_line=end_line,
                content=chunk,
                content_hash=content_hash(file_path, start_line, end_line, chunk),
                file_hash=file_hash,
                segment=segment,
            )
        )

    def emit(start: int, end: int) -> None:
        if prefix[end + 1] - prefix[start] < min_chars:
            return
        add(base_start_line + start, base_start_line + end, '\n'.join(lines[start : end + 1]))

    def emit_line_pieces(index: int) -> None:
        line = lines[index]
        piece_count = -(-len(line) // max_chars)
        piece_size = -(-len(line) // piece_count)
        line_number = base_start_line + index
        for segment, offset in enumerate(range(0, len(line), piece_size)):
            piece = line[offset : offset + piece_size]
            if len(piece) >= min_chars:
                add(line_number, line_number, piece, segment)

    chunk_start = 0
    i = 0
    while i < n:
        if len(lines[i]) > max_chars:
            if i > chunk_start:
                emit(chunk_start, i - 1)
            emit_line_pieces(i)
            chunk_start = i + 1
            i = chunk_start
            continue

        current = prefix[i] - prefix[chunk_start]
        line_length = prefix[i + 1] - prefix[i]
        if i == chunk_start or current + line_length <= max_chars:
            i += 1
            continue

        split = i - 1
        if current >= min_chars and total - prefix[i] < min_remainder_chars and i - chunk_start > 1:
            for k in range(i - 2, chunk_start - 1, -1):
                if prefix[k + 1] - prefix[chunk_start] >= min_chars and total - prefix[k + 1] >= min_remainder_chars:
                    split = k
                    break

        emit(chunk_start, split)
        chunk_start = split + 1
        i = chunk_start

    if chunk_start < n:
        emit(chunk_start, n - 1)

    return blocks


def _outermost_nodes(root: tree_sitter.Node, node_types: Set[str]) -> list[tree_sitter.Node]:
    """Nodes of interest not nested in another node of interest, in document order."""
    found: list[tree_sitter.Node] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in node_types:
            found.append(node)
            continue
        stack.extend(reversed(node.children))
    return found


def _node_text(node: tree_sitter.Node) -> str:
    return node.text.decode(errors='replace') if node.text is not None else ''


def _identifier(node: tree_sitter.Node) -> str | None:
    name_node = node.child_by_field_name('name')
    if name_node is None:
        # decorated_definition wraps the named node
        definition = node.child_by_field_name('definition')
        if definition is not None:
            name_node = definition.child_by_field_name('name')
    if name_node is None:
        name_node = next((child for child in node.children if child.type == 'identifier'), None)
    return _node_text(name_node) if name_node is not None else None
