"""The four-stage Opus build: acquire, configure, compile, generate bindings."""

import logging
from dataclasses import dataclass
from typing import Mapping

from opus_native._internals.bindings.generator import (
    BindingGenerator,
    BindingOptions,
    BindingOutput,
    Preprocessor,
)
from opus_native._internals.compiler import NativeArtifact, NativeCompiler, Toolchain
from opus_native._internals.config import BuildConfig, BuildSettings, EnvSignals, configure
from opus_native._internals.source import GitRunner, SourceAcquirer, SourceTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Everything a host build needs from one run."""

    tree: SourceTree
    config: BuildConfig
    artifact: NativeArtifact
    bindings: BindingOutput

    def to_dict(self) -> dict:
        return {
            "source_dir": str(self.tree.root),
            "version": self.tree.version,
            "config": self.config.to_dict(),
            "library": str(self.artifact.path),
            "library_dir": str(self.artifact.library_dir),
            "bindings": str(self.bindings.path),
            "declarations": len(self.bindings.declarations),
        }


class OpusBuild:
    """
    Runs the build stages in order, each one only after the previous succeeded.

    The collaborators that reach outside the process (git, the C compiler,
    the preprocessor) can be swapped out; by default the real tools are used.
    """

    def __init__(
        self,
        settings: BuildSettings | None = None,
        *,
        runner: GitRunner | None = None,
        toolchain: Toolchain | None = None,
        preprocessor: Preprocessor | None = None,
        verify_cached: bool = True,
    ):
        self.settings = settings or BuildSettings.from_env()
        self.acquirer = SourceAcquirer(
            runner=runner,
            repository_url=self.settings.repository_url,
            verify_cached=verify_cached,
        )
        self.compiler = NativeCompiler(toolchain)
        self.generator = BindingGenerator(preprocessor)

    def acquire(self) -> SourceTree:
        return self.acquirer.ensure(self.settings.source_dir, self.settings.version)

    def configure(self, environ: Mapping[str, str] | None = None) -> BuildConfig:
        """Snapshot the environment once and derive the build configuration."""
        signals = EnvSignals.from_environ(environ, compiler_kind=self.compiler.toolchain.kind)
        logger.debug("Build signals: %s", signals)
        return configure(signals)

    def compile(self, tree: SourceTree, config: BuildConfig) -> NativeArtifact:
        return self.compiler.compile(tree, config, self.settings.out_dir)

    def generate_bindings(
        self, tree: SourceTree, options: BindingOptions | None = None
    ) -> BindingOutput:
        return self.generator.generate(tree, self.settings.out_dir, options)

    def run(
        self,
        environ: Mapping[str, str] | None = None,
        options: BindingOptions | None = None,
    ) -> PipelineResult:
        """Run all four stages. Any failure raises an OpusBuildError."""
        tree = self.acquire()
        config = self.configure(environ)
        artifact = self.compile(tree, config)
        bindings = self.generate_bindings(tree, options)
        return PipelineResult(tree=tree, config=config, artifact=artifact, bindings=bindings)


def build(settings: BuildSettings | None = None, **kwargs) -> PipelineResult:
    """Run the whole pipeline with default collaborators."""
    return OpusBuild(settings, **kwargs).run()
