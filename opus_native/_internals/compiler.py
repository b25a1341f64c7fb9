"""Native compilation of the Opus sources into a static archive."""

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

from opus_native._internals.config import BuildConfig, CompilerKind
from opus_native._internals.errors import CompilationError
from opus_native._internals.source import SourceTree

logger = logging.getLogger(__name__)

LIBRARY_NAME = "opus"
SOURCE_SUFFIX = ".c"

# Relative to the source root, in search order
INCLUDE_DIRS = ("include", "src", "celt", "silk", "silk/float")

# Directories whose translation units make up the library
MODULE_DIRS = ("src", "celt", "silk", "silk/float")


class ScanStatus(enum.Enum):
    """Outcome of listing one module directory."""

    FOUND = "found"
    EMPTY = "empty"
    MISSING = "missing"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class ModuleScan:
    """Translation units found in one module directory."""

    module: str
    directory: Path
    status: ScanStatus
    files: tuple[Path, ...] = ()
    error: str | None = None


@dataclass
class CompilationUnitSet:
    """All translation units, grouped by module."""

    scans: list[ModuleScan] = field(default_factory=list)

    @property
    def files(self) -> list[Path]:
        return [path for scan in self.scans for path in scan.files]

    def by_module(self) -> dict[str, tuple[Path, ...]]:
        return {scan.module: scan.files for scan in self.scans}

    def __len__(self) -> int:
        return sum(len(scan.files) for scan in self.scans)


def scan_module(root: Path, module: str) -> ModuleScan:
    """
    List the ``.c`` files directly inside ``root/module``.

    Subdirectories and other files are ignored. A missing or unreadable
    directory is not an error: it contributes no files and says why.
    """
    directory = root / module
    if not directory.is_dir():
        return ModuleScan(module, directory, ScanStatus.MISSING)

    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        return ModuleScan(module, directory, ScanStatus.UNREADABLE, error=str(e))

    files = tuple(p for p in entries if p.suffix == SOURCE_SUFFIX and p.is_file())
    status = ScanStatus.FOUND if files else ScanStatus.EMPTY
    return ModuleScan(module, directory, status, files)


def discover_sources(root: Path, modules: Sequence[str] = MODULE_DIRS) -> CompilationUnitSet:
    """Scan every module directory under ``root``."""
    units = CompilationUnitSet()
    for module in modules:
        scan = scan_module(root, module)
        if scan.status in (ScanStatus.MISSING, ScanStatus.UNREADABLE):
            logger.info("Skipping %s module (%s)", module, scan.status.value)
        else:
            logger.debug("%s: %d translation units", module, len(scan.files))
        units.scans.append(scan)
    return units


@dataclass(frozen=True)
class NativeArtifact:
    """The static archive produced by the compiler."""

    name: str
    path: Path

    @property
    def library_dir(self) -> Path:
        return self.path.parent

    def link_args(self) -> dict:
        """Keyword arguments for cffi's ``set_source`` / setuptools Extension."""
        return {"libraries": [self.name], "library_dirs": [str(self.library_dir)]}


class Toolchain(Protocol):
    """The native compiler, treated as a black box."""

    kind: CompilerKind

    def compile(
        self,
        sources: Sequence[Path],
        output_dir: Path,
        include_dirs: Sequence[Path],
        defines: Sequence[str],
        extra_args: Sequence[str],
    ) -> list[str]:
        """Compile ``sources`` and return the object file paths."""
        ...

    def archive(self, objects: Sequence[str], name: str, output_dir: Path) -> Path:
        """Bundle ``objects`` into a static library and return its path."""
        ...


class DistutilsToolchain:
    """
    Toolchain backed by the platform CCompiler from setuptools' distutils.

    Honors CC/CFLAGS the same way extension builds do.
    """

    def __init__(self, compiler=None):
        # setuptools provides distutils on interpreters that no longer ship it
        import setuptools  # noqa: F401
        from distutils.ccompiler import new_compiler
        from distutils.sysconfig import customize_compiler

        if compiler is None:
            compiler = new_compiler()
            customize_compiler(compiler)
        self._compiler = compiler

    @property
    def kind(self) -> CompilerKind:
        return "msvc" if self._compiler.compiler_type == "msvc" else "gnu"

    def compile(self, sources, output_dir, include_dirs, defines, extra_args):
        from distutils.errors import CompileError

        try:
            return self._compiler.compile(
                [str(s) for s in sources],
                output_dir=str(output_dir),
                macros=[(name, None) for name in defines],
                include_dirs=[str(d) for d in include_dirs],
                extra_postargs=list(extra_args),
            )
        except CompileError as e:
            raise CompilationError("compilation", str(e)) from e

    def archive(self, objects, name, output_dir):
        from distutils.errors import LibError

        try:
            self._compiler.create_static_lib(list(objects), name, output_dir=str(output_dir))
        except LibError as e:
            raise CompilationError("archiving", str(e)) from e
        return Path(
            self._compiler.library_filename(name, lib_type="static", output_dir=str(output_dir))
        )


class NativeCompiler:
    """Compiles the discovered translation units into ``libopus``."""

    def __init__(self, toolchain: Toolchain | None = None):
        self._toolchain = toolchain

    @property
    def toolchain(self) -> Toolchain:
        if self._toolchain is None:
            self._toolchain = DistutilsToolchain()
        return self._toolchain

    def compile(self, tree: SourceTree, config: BuildConfig, build_dir: Path) -> NativeArtifact:
        """
        Compile the tree with the given configuration.

        Args:
            tree: Acquired source tree
            config: Defines and flags from the configurator
            build_dir: Directory for objects and the archive

        Raises:
            CompilationError: with the compiler's own diagnostic
        """
        units = discover_sources(tree.root)
        include_dirs = [tree.root / d for d in INCLUDE_DIRS]
        extra_args = [config.opt_flag, *config.flags]

        obj_dir = build_dir / "obj"
        lib_dir = build_dir / "lib"
        obj_dir.mkdir(parents=True, exist_ok=True)
        lib_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Compiling %d Opus translation units", len(units))
        objects = self.toolchain.compile(
            units.files,
            output_dir=obj_dir,
            include_dirs=include_dirs,
            defines=config.defines,
            extra_args=extra_args,
        )
        path = self.toolchain.archive(objects, LIBRARY_NAME, lib_dir)
        logger.info("Built %s", path)
        return NativeArtifact(name=LIBRARY_NAME, path=Path(path))
