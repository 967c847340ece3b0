"""Tree-sitter powered decomposition of source files into code chunks."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Dict, Iterable, Iterator, List, Optional

from .logging import get_logger
from .models import CodeChunk, PrioritizedFile, RepoFile

try:  # pragma: no cover - optional dependency
    from tree_sitter import Parser
    from tree_sitter_languages import get_language

    TREE_SITTER_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Parser = None  # type: ignore[assignment]
    get_language = None  # type: ignore[assignment]
    TREE_SITTER_AVAILABLE = False

logger = get_logger("chunker")

_LANGUAGE_BY_SUFFIX = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
}

_FUNCTION_TYPES = {
    "function_declaration",
    "generator_function_declaration",
    "function_definition",
}
_CLASS_TYPES = {"class_declaration", "abstract_class_declaration", "class_definition"}
_BINDING_TYPES = {"lexical_declaration", "variable_declaration"}
_CALLABLE_VALUES = {"arrow_function", "function", "function_expression"}

# Bindings shorter than this are treated as plain values rather than components.
MIN_COMPONENT_CHARS = 80

FALLBACK_KIND = "module-fallback"


def language_for_path(path: str) -> Optional[str]:
    return _LANGUAGE_BY_SUFFIX.get(PurePosixPath(path).suffix.lower())


def chunk_id(path: str, start_line: int, end_line: int) -> str:
    return f"{path}:{start_line}-{end_line}"


class Chunker:
    """Emits function, class and component chunks, or one whole-file fallback."""

    def __init__(self, enabled: Optional[bool] = None) -> None:
        self._enabled = TREE_SITTER_AVAILABLE if enabled is None else enabled
        self._parsers: Dict[str, Parser] = {}

    def chunk(self, files: Iterable[PrioritizedFile | RepoFile]) -> List[CodeChunk]:
        chunks: List[CodeChunk] = []
        for item in files:
            repo_file = item.file if isinstance(item, PrioritizedFile) else item
            chunks.extend(self.chunk_file(repo_file))
        logger.debug("Chunker produced %d chunks", len(chunks))
        return chunks

    def chunk_file(self, repo_file: RepoFile) -> List[CodeChunk]:
        if repo_file.is_binary or repo_file.content is None:
            return []
        language_key = language_for_path(repo_file.path)
        if language_key is None:
            return []
        source = repo_file.content
        found = list(self._structural_chunks(repo_file.path, language_key, source))
        if found:
            return found
        return [self._fallback(repo_file.path, source)]

    def _structural_chunks(self, path: str, language_key: str, source: bytes) -> Iterator[CodeChunk]:
        parser = self._get_parser(language_key)
        if parser is None:
            return
        try:
            tree = parser.parse(source)
        except Exception as exc:  # pragma: no cover - parser internals
            logger.debug("Failed to parse %s: %s", path, exc)
            return
        root = tree.root_node
        if root.has_error:
            logger.debug("Syntax errors in %s; using whole-file chunk", path)
            return
        for node in root.children:
            yield from self._chunks_for_node(path, node, source)

    def _chunks_for_node(self, path: str, node, source: bytes) -> Iterator[CodeChunk]:  # type: ignore[no-untyped-def]
        target = _unwrap(node)
        if target.type in _FUNCTION_TYPES:
            yield self._make(path, "function", _name_of(target, source), node, source)
        elif target.type in _CLASS_TYPES:
            yield self._make(path, "class", _name_of(target, source), node, source)
        elif target.type in _BINDING_TYPES and _is_component_binding(target, source):
            yield self._make(path, "component", _binding_name(target, source), node, source)

    @staticmethod
    def _make(path: str, kind: str, name: Optional[str], node, source: bytes) -> CodeChunk:  # type: ignore[no-untyped-def]
        start_line = node.start_point[0] + 1
        end_line = node.end_point[0] + 1
        return CodeChunk(
            id=chunk_id(path, start_line, end_line),
            file=path,
            kind=kind,
            name=name,
            text=_node_text(node, source),
            start_line=start_line,
            end_line=end_line,
        )

    @staticmethod
    def _fallback(path: str, source: bytes) -> CodeChunk:
        text = source.decode("utf-8", errors="replace")
        end_line = max(1, text.count("\n") + (0 if text.endswith("\n") else 1))
        return CodeChunk(
            id=chunk_id(path, 1, end_line),
            file=path,
            kind=FALLBACK_KIND,
            name=None,
            text=text,
            start_line=1,
            end_line=end_line,
        )

    def _get_parser(self, language_key: str) -> Optional[Parser]:
        if not self._enabled:
            return None
        parser = self._parsers.get(language_key)
        if parser is not None:
            return parser
        try:
            language = get_language(language_key)
            parser = Parser()
            parser.set_language(language)
        except Exception as exc:  # pragma: no cover - grammar bundle issues
            logger.warning("tree-sitter grammar %s unavailable: %s", language_key, exc)
            self._enabled = False
            return None
        self._parsers[language_key] = parser
        return parser


def _unwrap(node):  # type: ignore[no-untyped-def]
    """Look through export and decorator wrappers to the declared node."""
    if node.type == "export_statement":
        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            return declaration
    if node.type == "decorated_definition":
        definition = node.child_by_field_name("definition")
        if definition is not None:
            return definition
    return node


def _node_text(node, source: bytes) -> str:  # type: ignore[no-untyped-def]
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def _name_of(node, source: bytes) -> Optional[str]:  # type: ignore[no-untyped-def]
    name_node = node.child_by_field_name("name")
    return _node_text(name_node, source) if name_node is not None else None


def _is_component_binding(node, source: bytes) -> bool:  # type: ignore[no-untyped-def]
    if node.end_byte - node.start_byte <= MIN_COMPONENT_CHARS:
        return False
    for child in node.children:
        if child.type != "variable_declarator":
            continue
        value = child.child_by_field_name("value")
        if value is not None and value.type in _CALLABLE_VALUES:
            return True
    return False


def _binding_name(node, source: bytes) -> Optional[str]:  # type: ignore[no-untyped-def]
    for child in node.children:
        if child.type == "variable_declarator":
            return _name_of(child, source)
    return None


__all__ = ["Chunker", "FALLBACK_KIND", "TREE_SITTER_AVAILABLE", "chunk_id", "language_for_path"]
