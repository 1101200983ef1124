"""
Smart Code Retriever Fragment Parser

Turns Python source into :class:`CodeFragment` records using the
built-in ``ast`` module, and loads / dumps fragment sets produced
elsewhere as JSON.

Fragment mapping:

- ``class`` → CLASS (INTERFACE when it derives from ``Protocol``/``ABC``,
  ENUM when it derives from an ``Enum`` family base)
- ``def`` / ``async def`` (module level or in a class) → METHOD
- class-level assignments → FIELD
"""

import ast
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from coderetriever.core.engine import CodeFragment, FragmentKind
from coderetriever.exceptions import ParseError

logger = logging.getLogger(__name__)

INTERFACE_BASES = frozenset({"Protocol", "ABC", "ABCMeta"})
ENUM_BASES = frozenset({"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"})

# Capitalized typing helpers that never name a project type
_TYPING_NAMES = frozenset({
    "Any", "Optional", "Union", "List", "Dict", "Set", "FrozenSet", "Tuple",
    "Type", "Callable", "Iterable", "Iterator", "Generator", "AsyncIterator",
    "AsyncGenerator", "Sequence", "Mapping", "MutableMapping", "Literal",
    "ClassVar", "Final", "Awaitable", "Coroutine", "None", "True", "False",
    "Self", "TypeVar", "Generic", "Annotated",
})


def module_name_for(file_path: Path, root: Path) -> str:
    """Dotted module path of *file_path* relative to *root*.

    ``pkg/sub/mod.py`` → ``pkg.sub.mod``; ``pkg/__init__.py`` → ``pkg``.
    """
    relative = file_path.resolve().relative_to(root.resolve()).with_suffix("")
    parts = list(relative.parts)
    if parts and parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts) or root.resolve().name


def _base_name(node: ast.expr) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Subscript):
        return _base_name(node.value)
    return None


def _unique(names: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


def _annotation_types(annotations: Sequence[Optional[ast.expr]]) -> List[str]:
    """Capitalized names referenced anywhere inside the annotations."""
    names = []
    for annotation in annotations:
        if annotation is None:
            continue
        for node in ast.walk(annotation):
            name = None
            if isinstance(node, ast.Name):
                name = node.id
            elif isinstance(node, ast.Attribute):
                name = node.attr
            elif isinstance(node, ast.Constant) and isinstance(node.value, str):
                # Forward references: "UserRepository"
                name = node.value.strip().split("[")[0].split(".")[-1]
            if name and name[0].isupper() and name not in _TYPING_NAMES:
                names.append(name)
    return _unique(names)


class PythonFragmentParser:
    """
    AST-based extraction of classes, functions, methods and fields.

    The parser is stateless; one instance can be shared by the worker
    threads of the indexing pipeline.
    """

    # ── Public API ───────────────────────────────────────────────

    def parse_file(self, file_path: Path, root: Path) -> List[CodeFragment]:
        """Parse one file below *root*.  Raises :class:`ParseError`."""
        try:
            source = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Cannot read {file_path}: {e}") from e
        return self.parse_source(source, module_name_for(file_path, root), str(file_path))

    def parse_source(self, source: str, module_name: str,
                     file_path: str = "<string>") -> List[CodeFragment]:
        """Parse Python *source* of module *module_name*.  Raises :class:`ParseError`."""
        try:
            tree = ast.parse(source)
        except SyntaxError as e:
            raise ParseError(f"Syntax error in {file_path}: {e}") from e

        lines = source.splitlines()
        fragments: List[CodeFragment] = []
        for node in tree.body:
            self._visit(node, module_name, module_name, file_path, lines, fragments)
        logger.debug(f"Parsed {len(fragments)} fragments from {file_path}")
        return fragments

    # ── AST walking ──────────────────────────────────────────────

    def _visit(self, node: ast.stmt, prefix: str, module_name: str, file_path: str,
               lines: List[str], out: List[CodeFragment], in_class: bool = False) -> None:
        if isinstance(node, ast.ClassDef):
            fragment = self._class_fragment(node, prefix, module_name, file_path, lines)
            out.append(fragment)
            for child in node.body:
                self._visit(child, fragment.id, module_name, file_path, lines, out,
                            in_class=True)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            out.append(self._function_fragment(node, prefix, module_name, file_path, lines))
        elif in_class and isinstance(node, (ast.Assign, ast.AnnAssign)):
            out.extend(self._field_fragments(node, prefix, module_name, file_path, lines))

    @staticmethod
    def _source_lines(node: ast.AST, lines: List[str]) -> tuple:
        start = node.lineno
        decorators = getattr(node, "decorator_list", None)
        if decorators:
            start = min([start] + [d.lineno for d in decorators])
        end = getattr(node, "end_lineno", None) or node.lineno
        return start, end, "\n".join(lines[start - 1:end])

    def _class_fragment(self, node: ast.ClassDef, prefix: str, module_name: str,
                        file_path: str, lines: List[str]) -> CodeFragment:
        bases = [b for b in (_base_name(base) for base in node.bases) if b]
        metaclasses = [
            _base_name(kw.value) for kw in node.keywords if kw.arg == "metaclass"
        ]

        if ENUM_BASES.intersection(bases):
            kind = FragmentKind.ENUM
        elif INTERFACE_BASES.intersection(bases + [m for m in metaclasses if m]):
            kind = FragmentKind.INTERFACE
        else:
            kind = FragmentKind.CLASS

        base_text = ", ".join(ast.unparse(b) for b in node.bases)
        signature = f"class {node.name}({base_text})" if base_text else f"class {node.name}"
        start, end, content = self._source_lines(node, lines)

        return CodeFragment(
            id=f"{prefix}.{node.name}",
            kind=kind,
            name=node.name,
            signature=signature,
            content=content,
            file_path=file_path,
            start_line=start,
            end_line=end,
            package_name=module_name,
            documentation=ast.get_docstring(node),
            dependencies=_unique(bases),
        )

    def _function_fragment(self, node, prefix: str, module_name: str,
                           file_path: str, lines: List[str]) -> CodeFragment:
        keyword = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
        signature = f"{keyword} {node.name}({ast.unparse(node.args)})"
        if node.returns is not None:
            signature += f" -> {ast.unparse(node.returns)}"

        args = node.args
        all_args = args.posonlyargs + args.args + args.kwonlyargs
        if args.vararg:
            all_args.append(args.vararg)
        if args.kwarg:
            all_args.append(args.kwarg)
        annotations = [a.annotation for a in all_args] + [node.returns]

        start, end, content = self._source_lines(node, lines)
        return CodeFragment(
            id=f"{prefix}.{node.name}",
            kind=FragmentKind.METHOD,
            name=node.name,
            signature=signature,
            content=content,
            file_path=file_path,
            start_line=start,
            end_line=end,
            package_name=module_name,
            documentation=ast.get_docstring(node),
            dependencies=_annotation_types(annotations),
        )

    def _field_fragments(self, node, prefix: str, module_name: str,
                         file_path: str, lines: List[str]) -> List[CodeFragment]:
        if isinstance(node, ast.AnnAssign):
            targets = [node.target]
            annotations = [node.annotation]
        else:
            targets = node.targets
            annotations = []

        start, end, content = self._source_lines(node, lines)
        fragments = []
        for target in targets:
            if not isinstance(target, ast.Name):
                continue
            fragments.append(CodeFragment(
                id=f"{prefix}.{target.id}",
                kind=FragmentKind.FIELD,
                name=target.id,
                signature=ast.unparse(node).split("\n")[0],
                content=content,
                file_path=file_path,
                start_line=start,
                end_line=end,
                package_name=module_name,
                dependencies=_annotation_types(annotations),
            ))
        return fragments


# =============================================================================
# JSON fragment sets
# =============================================================================

def load_fragments(json_path: Path) -> List[CodeFragment]:
    """
    Load fragments from a JSON file.

    Accepts either a list of fragment objects or ``{"fragments": [...]}``.
    Raises :class:`ParseError` when the file is unreadable or malformed.
    """
    try:
        data = json.loads(Path(json_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ParseError(f"Cannot load fragments from {json_path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("fragments")
    if not isinstance(data, list):
        raise ParseError(f"{json_path}: expected a list of fragments")

    fragments = []
    for i, item in enumerate(data):
        try:
            fragments.append(CodeFragment.from_dict(item))
        except (KeyError, ValueError, TypeError) as e:
            raise ParseError(f"{json_path}: invalid fragment at position {i}: {e}") from e
    logger.info(f"Loaded {len(fragments)} fragments from {json_path}")
    return fragments


def dump_fragments(fragments: Iterable[CodeFragment], json_path: Path,
                   include_embedding: bool = False) -> int:
    """Write *fragments* to *json_path*; returns the number written."""
    payload = [f.to_dict(include_embedding=include_embedding) for f in fragments]
    Path(json_path).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return len(payload)
