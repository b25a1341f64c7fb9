"""Build-time tooling that fetches, compiles and binds the Opus codec for cffi."""

from opus_native._internals.bindings.generator import BindingOptions, BindingOutput
from opus_native._internals.compiler import NativeArtifact
from opus_native._internals.config import BuildConfig, BuildSettings, EnvSignals, configure
from opus_native._internals.errors import (
    BindingGenerationError,
    CheckoutError,
    CloneError,
    CompilationError,
    OpusBuildError,
    RevisionNotFoundError,
    StaleSourceError,
)
from opus_native._internals.source import SourceAcquirer, SourceTree
from opus_native.pipeline import OpusBuild, PipelineResult, build

__all__ = [
    "BindingGenerationError",
    "BindingOptions",
    "BindingOutput",
    "BuildConfig",
    "BuildSettings",
    "CheckoutError",
    "CloneError",
    "CompilationError",
    "EnvSignals",
    "NativeArtifact",
    "OpusBuild",
    "OpusBuildError",
    "PipelineResult",
    "RevisionNotFoundError",
    "SourceAcquirer",
    "SourceTree",
    "StaleSourceError",
    "build",
    "configure",
]
