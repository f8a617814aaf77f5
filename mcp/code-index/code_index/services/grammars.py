"""Tree-sitter grammar registry.

Maps file extensions to bundled tree-sitter grammars and the syntax node types
worth indexing on their own (definitions, not statements). Extensions in the
supported allow-list without a grammar here are chunked by lines.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Mapping, Set

import attrs
import tree_sitter_go
import tree_sitter_javascript
import tree_sitter_python
import tree_sitter_rust
import tree_sitter_typescript
from tree_sitter import Language, Parser

__all__ = [
    'GRAMMARS',
    'Grammar',
    'grammar_for_extension',
    'new_parser',
]

_JS_NODES = frozenset(
    {
        'class_declaration',
        'function_declaration',
        'generator_function_declaration',
        'method_definition',
        'lexical_declaration',
        'variable_declaration',
    }
)

_TS_NODES = _JS_NODES | {
    'abstract_class_declaration',
    'interface_declaration',
    'type_alias_declaration',
    'enum_declaration',
    'internal_module',
    'function_signature',
}


@attrs.define(frozen=True, kw_only=True)
class Grammar:
    """A bundled grammar and the node types that form code blocks."""

    name: str
    language_factory: Callable[[], object]
    node_types: Set[str]

    @property
    def language(self) -> Language:
        return _load_language(self.name)


GRAMMARS: Mapping[str, Grammar] = {
    grammar.name: grammar
    for grammar in (
        Grammar(
            name='python',
            language_factory=tree_sitter_python.language,
            node_types=frozenset({'class_definition', 'function_definition', 'decorated_definition'}),
        ),
        Grammar(name='javascript', language_factory=tree_sitter_javascript.language, node_types=_JS_NODES),
        Grammar(name='typescript', language_factory=tree_sitter_typescript.language_typescript, node_types=_TS_NODES),
        Grammar(name='tsx', language_factory=tree_sitter_typescript.language_tsx, node_types=_TS_NODES),
        Grammar(
            name='go',
            language_factory=tree_sitter_go.language,
            node_types=frozenset({'function_declaration', 'method_declaration', 'type_declaration'}),
        ),
        Grammar(
            name='rust',
            language_factory=tree_sitter_rust.language,
            node_types=frozenset(
                {
                    'function_item',
                    'struct_item',
                    'enum_item',
                    'impl_item',
                    'trait_item',
                    'mod_item',
                    'macro_definition',
                }
            ),
        ),
    )
}

_EXTENSION_GRAMMARS: Mapping[str, str] = {
    '.py': 'python',
    '.js': 'javascript',
    '.jsx': 'javascript',
    '.ts': 'typescript',
    '.tsx': 'tsx',
    '.go': 'go',
    '.rs': 'rust',
}


def grammar_for_extension(extension: str) -> Grammar | None:
    """Grammar for a file extension (with leading dot), or None."""
    name = _EXTENSION_GRAMMARS.get(extension.lower())
    return GRAMMARS[name] if name is not None else None


def new_parser(grammar: Grammar) -> Parser:
    """Fresh parser for the grammar. Parsers aren't shared across threads."""
    return Parser(grammar.language)


@functools.lru_cache(maxsize=None)
def _load_language(name: str) -> Language:
    return Language(GRAMMARS[name].language_factory())
