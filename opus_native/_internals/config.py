"""Build configuration: environment signals, settings and the define set."""

import logging
import os
import platform
import sysconfig
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Mapping

logger = logging.getLogger(__name__)

OPUS_TAG_VERSION = "v1.5.2"
OPUS_REPOSITORY_URL = "https://github.com/xiph/opus.git"

CompilerKind = Literal["msvc", "gnu"]

# Defines every build gets, regardless of target
BASE_DEFINES = ("OPUS_BUILD", "USE_ALLOCA", "HAVE_LRINT", "HAVE_LRINTF")

# Only understood by GCC/Clang
WARNING_FLAGS = (
    "-Wno-unused-variable",
    "-Wno-unused-parameter",
    "-Wno-unused-but-set-variable",
    "-Wno-maybe-uninitialized",
    "-Wno-sign-compare",
    "-Wno-pragmas",
)

OPT_LEVEL = 2

SIMD_TOGGLE_VALUES = ("true", "1")

# Architecture aliases as reported by platform.machine()
_ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "i386": "x86",
    "i486": "x86",
    "i586": "x86",
    "i686": "x86",
    "arm64": "aarch64",
    "armv6l": "arm",
    "armv7l": "arm",
    "armv8l": "arm",
}

# Features every target of an architecture has without extra -m flags
_BASELINE_FEATURES = {
    "x86_64": ("fxsr", "sse", "sse2"),
    "aarch64": ("neon",),
}

# -m compiler flags that imply an instruction-set feature
_FLAG_FEATURES = {
    "-mavx": "avx",
    "-mavx2": "avx2",
    "-msse4.1": "sse4.1",
    "-msse4.2": "sse4.2",
    "-msse2": "sse2",
    "-mfpu=neon": "neon",
}


def normalize_arch(machine: str) -> str:
    """Map a machine name (``AMD64``, ``arm64``, ...) to an arch tag."""
    machine = machine.strip().lower()
    return _ARCH_ALIASES.get(machine, machine)


def parse_feature_list(value: str | None) -> frozenset[str]:
    """Parse a comma separated feature list like ``fxsr,sse,sse2``."""
    if not value:
        return frozenset()
    return frozenset(item.strip().lower() for item in value.split(",") if item.strip())


def features_from_flags(flags: str | None) -> frozenset[str]:
    """Extract instruction-set features from compiler flags (``-mavx`` etc)."""
    if not flags:
        return frozenset()
    features = set()
    for flag in flags.split():
        if flag in _FLAG_FEATURES:
            features.add(_FLAG_FEATURES[flag])
    return frozenset(features)


@dataclass(frozen=True)
class EnvSignals:
    """Snapshot of the build environment, read once per build."""

    target_arch: str
    target_features: frozenset[str] = frozenset()
    simd_toggle: str | None = None
    ambient_features: frozenset[str] = frozenset()
    compiler_kind: CompilerKind = "gnu"

    @classmethod
    def from_environ(
        cls,
        environ: Mapping[str, str] | None = None,
        compiler_kind: CompilerKind = "gnu",
    ) -> "EnvSignals":
        """
        Read the signals from the environment.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            compiler_kind: "msvc" or "gnu", as reported by the toolchain
        """
        if environ is None:
            environ = os.environ

        target_arch = normalize_arch(environ.get("OPUS_TARGET_ARCH") or platform.machine())

        if "OPUS_TARGET_FEATURES" in environ:
            target_features = parse_feature_list(environ["OPUS_TARGET_FEATURES"])
        else:
            target_features = frozenset(_BASELINE_FEATURES.get(target_arch, ()))

        # Flags the interpreter was built with, plus whatever the user exports
        ambient = features_from_flags(sysconfig.get_config_var("CFLAGS"))
        ambient |= features_from_flags(environ.get("CFLAGS"))

        return cls(
            target_arch=target_arch,
            target_features=target_features,
            simd_toggle=environ.get("OPUS_SIMD_ENABLE"),
            ambient_features=ambient,
            compiler_kind=compiler_kind,
        )


@dataclass(frozen=True)
class BuildConfig:
    """Resolved compilation settings for one build."""

    target_arch: str
    target_features: frozenset[str]
    ambient_features: frozenset[str]
    simd_enabled: bool
    compiler_kind: CompilerKind
    defines: tuple[str, ...]
    flags: tuple[str, ...]
    opt_level: int = OPT_LEVEL

    @property
    def arch_defines(self) -> tuple[str, ...]:
        """Defines selecting architecture-specific code paths."""
        return tuple(d for d in self.defines if d not in BASE_DEFINES)

    @property
    def opt_flag(self) -> str:
        if self.compiler_kind == "msvc":
            return f"/O{self.opt_level}"
        return f"-O{self.opt_level}"

    def to_dict(self) -> dict:
        return {
            "target_arch": self.target_arch,
            "target_features": sorted(self.target_features),
            "ambient_features": sorted(self.ambient_features),
            "simd_enabled": self.simd_enabled,
            "compiler_kind": self.compiler_kind,
            "defines": list(self.defines),
            "flags": list(self.flags),
            "opt_level": self.opt_level,
        }


def _has_feature(features: frozenset[str], name: str) -> bool:
    return any(name in feature for feature in features)


def _simd_defines(signals: EnvSignals) -> list[str]:
    arch = signals.target_arch
    detected = signals.target_features | signals.ambient_features
    defines = []

    if arch in ("x86", "x86_64"):
        if _has_feature(detected, "avx"):
            defines.append("OPUS_X86_MAY_HAVE_AVX")
            logger.warning("Enabling AVX optimizations for Opus")
        if _has_feature(detected, "sse4.1"):
            defines.append("OPUS_X86_MAY_HAVE_SSE4_1")
            logger.warning("Enabling SSE4.1 optimizations for Opus")
        if _has_feature(detected, "sse2"):
            defines.append("OPUS_X86_MAY_HAVE_SSE2")
            logger.warning("Enabling SSE2 optimizations for Opus")
        defines.append("OPUS_X86_PRESUME_SSE")

    elif arch in ("arm", "aarch64"):
        if _has_feature(signals.target_features, "neon") or arch == "aarch64":
            defines.extend(["OPUS_ARM_MAY_HAVE_NEON", "OPUS_ARM_MAY_HAVE_NEON_INTR"])
            logger.warning("Enabling NEON optimizations for Opus")

    return defines


def configure(signals: EnvSignals) -> BuildConfig:
    """
    Derive the define set and compiler flags for a build.

    SIMD code paths are opt-in: nothing architecture-specific is defined
    unless OPUS_SIMD_ENABLE is "true" or "1", whatever the hardware supports.
    """
    simd_enabled = signals.simd_toggle in SIMD_TOGGLE_VALUES

    defines = list(BASE_DEFINES)
    if simd_enabled:
        defines.extend(_simd_defines(signals))

    flags = () if signals.compiler_kind == "msvc" else WARNING_FLAGS

    return BuildConfig(
        target_arch=signals.target_arch,
        target_features=signals.target_features,
        ambient_features=signals.ambient_features,
        simd_enabled=simd_enabled,
        compiler_kind=signals.compiler_kind,
        defines=tuple(defines),
        flags=tuple(flags),
    )


@dataclass
class BuildSettings:
    """Where the sources live, where outputs go, and which tag to build."""

    source_dir: Path = field(default_factory=lambda: Path("opus"))
    out_dir: Path = field(default_factory=lambda: Path("build") / "opus")
    version: str = OPUS_TAG_VERSION
    repository_url: str = OPUS_REPOSITORY_URL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BuildSettings":
        if environ is None:
            environ = os.environ
        settings = cls()
        if environ.get("OPUS_SOURCE_DIR"):
            settings.source_dir = Path(environ["OPUS_SOURCE_DIR"])
        if environ.get("OPUS_OUT_DIR"):
            settings.out_dir = Path(environ["OPUS_OUT_DIR"])
        if environ.get("OPUS_VERSION"):
            settings.version = environ["OPUS_VERSION"]
        if environ.get("OPUS_REPOSITORY_URL"):
            settings.repository_url = environ["OPUS_REPOSITORY_URL"]
        return settings
