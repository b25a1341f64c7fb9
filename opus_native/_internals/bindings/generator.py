"""
Generate cffi declarations from the Opus public headers.

The headers are run through the C preprocessor and parsed with pycparser
(the parser cffi itself uses). Every declaration that comes from inside the
source tree is turned back into C text for ``FFI.cdef()``.
"""

import logging
import os
import re
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from pycparser import c_ast, c_generator, c_parser, preprocess_file

from opus_native._internals.errors import BindingGenerationError
from opus_native._internals.source import SourceTree

logger = logging.getLogger(__name__)

# Fixed public API surface, in parse order
HEADERS = (
    "include/opus.h",
    "include/opus_custom.h",
    "include/opus_multistream.h",
    "include/opus_projection.h",
)

INCLUDE_DIRS = ("include", "src")

OUTPUT_NAME = "opus_cdef.h"

# Compiler extensions pycparser cannot parse
NEUTRALIZED_MACROS = (
    "__attribute__(x)=",
    "__declspec(x)=",
    "__asm__(x)=",
    "__extension__=",
    "__inline=",
    "__restrict=",
    "__restrict__=",
)

# Enough of the C library for the Opus headers to parse. cffi knows these
# types natively, so nothing from here is ever emitted.
_LIBC_SHIM = {
    "stdint.h": """\
typedef signed char int8_t;
typedef unsigned char uint8_t;
typedef short int16_t;
typedef unsigned short uint16_t;
typedef int int32_t;
typedef unsigned int uint32_t;
typedef long long int64_t;
typedef unsigned long long uint64_t;
typedef long intptr_t;
typedef unsigned long uintptr_t;
""",
    "stddef.h": """\
typedef unsigned long size_t;
typedef long ptrdiff_t;
#define NULL ((void *)0)
""",
}

_DEFINE_RE = re.compile(
    r"^\s*#\s*define\s+([A-Za-z_]\w*)[ \t]+"
    r"(\(?\s*-?\s*(?:0[xX][0-9a-fA-F]+|\d+)[uUlL]*\s*\)?)"
    r"\s*(?:/\*.*|//.*)?$"
)


@dataclass(frozen=True)
class BindingOptions:
    """
    Generation switches.

    derive_debug: annotate every declaration with the header line it came from
    derive_default: emit the integer macros (error codes, OPUS_AUTO, ...)
    allowlist_recursively: emit declarations from headers the public ones
        include, not only from the public headers themselves
    """

    derive_debug: bool = True
    derive_default: bool = True
    allowlist_recursively: bool = True


@dataclass(frozen=True)
class Declaration:
    """One emitted cdef entry."""

    name: str
    kind: str  # function, typedef, struct, union, enum, variable, constant
    text: str
    origin: Path
    line: int


@dataclass(frozen=True)
class BindingOutput:
    """The generated declaration file."""

    path: Path
    declarations: tuple[Declaration, ...]

    @property
    def symbols(self) -> set[str]:
        return {decl.name for decl in self.declarations}

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")


class Preprocessor(Protocol):
    """Runs the C preprocessor over one file and returns the output text."""

    def __call__(
        self, source: Path, include_dirs: Sequence[Path], defines: Sequence[str]
    ) -> str: ...


class CppPreprocessor:
    """The system C preprocessor, via pycparser's ``preprocess_file``."""

    def __init__(self, cpp: str | None = None):
        """
        Args:
            cpp: Preprocessor command, e.g. "cpp" or "clang -E" (defaults to $CPP or cpp)
        """
        command = shlex.split(cpp or os.environ.get("CPP") or "cpp")
        self.cpp_path = command[0]
        self.cpp_args = command[1:]

    def __call__(self, source, include_dirs, defines):
        args = [*self.cpp_args]
        args.extend(f"-I{d}" for d in include_dirs)
        args.extend(f"-D{d}" for d in defines)
        try:
            return preprocess_file(str(source), cpp_path=self.cpp_path, cpp_args=args)
        except (RuntimeError, subprocess.CalledProcessError) as e:
            raise BindingGenerationError(source.name, f"preprocessing failed: {e}") from e


def _origin(node: c_ast.Node) -> tuple[Path | None, int]:
    coord = node.coord
    if coord is None or not coord.file:
        return None, 0
    return Path(coord.file).resolve(), coord.line or 0


def _describe(node: c_ast.Node) -> tuple[str, str] | None:
    """Return (name, kind) for a top-level node worth emitting."""
    if isinstance(node, c_ast.Typedef):
        return node.name, "typedef"
    if isinstance(node, c_ast.Decl):
        if isinstance(node.type, c_ast.FuncDecl):
            return node.name, "function"
        if node.name is None and isinstance(node.type, (c_ast.Struct, c_ast.Union, c_ast.Enum)):
            if node.type.name is None:
                return None
            return node.type.name, type(node.type).__name__.lower()
        if node.name:
            return node.name, "variable"
    return None


def collect_macros(path: Path) -> list[tuple[str, str, int]]:
    """Object-like integer macros in a header, as (name, value, line)."""
    macros = []
    text = path.read_text(encoding="utf-8", errors="replace")
    for lineno, line in enumerate(text.splitlines(), start=1):
        match = _DEFINE_RE.match(line)
        if match:
            value = re.sub(r"[\s()]", "", match.group(2))
            macros.append((match.group(1), value, lineno))
    return macros


class BindingGenerator:
    """Turns the four public Opus headers into a cffi declaration file."""

    def __init__(self, preprocessor: Preprocessor | None = None):
        self._preprocess = preprocessor or CppPreprocessor()
        self._generator = c_generator.CGenerator()

    def generate(
        self,
        tree: SourceTree,
        out_dir: Path,
        options: BindingOptions | None = None,
        headers: Sequence[str] = HEADERS,
    ) -> BindingOutput:
        """
        Parse the headers and write ``out_dir/opus_cdef.h``.

        Raises:
            BindingGenerationError: naming the header or declaration at fault.
                Nothing is written in that case.
        """
        options = options or BindingOptions()
        root = tree.root.resolve()
        header_paths = [root / h for h in headers]
        for path in header_paths:
            if not path.is_file():
                raise BindingGenerationError(str(path), "header not found")

        ast = self._parse(root, header_paths)
        allowed = set(header_paths)

        declarations = []
        seen = set()
        for node in ast.ext:
            described = _describe(node)
            if described is None:
                continue
            origin, line = _origin(node)
            if origin is None or not origin.is_relative_to(root):
                continue
            if not options.allowlist_recursively and origin not in allowed:
                continue
            name, kind = described
            text = self._render(node)
            if (kind, name, text) in seen:
                continue
            seen.add((kind, name, text))
            declarations.append(Declaration(name, kind, text, origin, line))

        if options.derive_default:
            declarations = self._macros(header_paths, declarations, options) + declarations

        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / OUTPUT_NAME
        self._write(path, tree, root, declarations, options)
        logger.info("Wrote %d declarations to %s", len(declarations), path)
        return BindingOutput(path=path, declarations=tuple(declarations))

    def _parse(self, root: Path, header_paths: list[Path]) -> c_ast.FileAST:
        with tempfile.TemporaryDirectory(prefix="opus-bindgen-") as tmp:
            tmp_dir = Path(tmp)
            shim_dir = tmp_dir / "libc"
            shim_dir.mkdir()
            for name, content in _LIBC_SHIM.items():
                (shim_dir / name).write_text(content, encoding="utf-8")

            umbrella = tmp_dir / "opus_bindings.c"
            umbrella.write_text(
                "".join(f'#include "{p.as_posix()}"\n' for p in header_paths),
                encoding="utf-8",
            )

            include_dirs = [shim_dir] + [root / d for d in INCLUDE_DIRS]
            text = self._preprocess(umbrella, include_dirs, NEUTRALIZED_MACROS)

        try:
            return c_parser.CParser().parse(text, filename=str(header_paths[0]))
        except c_parser.ParseError as e:
            raise BindingGenerationError("Opus public headers", str(e)) from e

    def _render(self, node: c_ast.Node) -> str:
        if isinstance(node, c_ast.Decl) and isinstance(node.type, c_ast.FuncDecl):
            node.storage = []
            node.funcspec = []
        return self._generator.visit(node) + ";"

    def _macros(self, header_paths, declarations, options) -> list[Declaration]:
        sources = list(header_paths)
        if options.allowlist_recursively:
            for decl in declarations:
                if decl.origin not in sources:
                    sources.append(decl.origin)

        macros = []
        names = set()
        for path in sources:
            for name, value, line in collect_macros(path):
                if name in names:
                    continue
                names.add(name)
                macros.append(Declaration(name, "constant", f"#define {name} {value}", path, line))
        return macros

    def _write(self, path, tree, root, declarations, options) -> None:
        lines = [f"/* Opus {tree.version} declarations for cffi. Generated, do not edit. */", ""]
        for decl in declarations:
            if options.derive_debug:
                lines.append(f"/* {decl.origin.relative_to(root).as_posix()}:{decl.line} */")
            lines.append(decl.text)
        content = "\n".join(lines) + "\n"

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".opus_cdef-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
