"""
CFFI build script for the Opus bindings.

Builds libopus and the declaration file through the pipeline, then compiles
the extension module against them.

Run with: uv run python opus_native/_internals/bindings/ffi_build.py
"""

from cffi import FFI

from opus_native.pipeline import PipelineResult, build

MODULE_NAME = "opus_native._opus_cffi"

# The source that CFFI will compile
SOURCE_CODE = """
#include "opus.h"
#include "opus_custom.h"
#include "opus_multistream.h"
#include "opus_projection.h"
"""


def host_cdef(result: PipelineResult) -> str:
    """
    Declarations the extension module can actually link.

    The opus_custom_* entry points are only compiled into libopus when
    CUSTOM_MODES is defined, so they are left out otherwise.
    """
    custom_modes = "CUSTOM_MODES" in result.config.defines
    lines = []
    for decl in result.bindings.declarations:
        if (
            decl.kind == "function"
            and decl.name.startswith("opus_custom_")
            and not custom_modes
        ):
            continue
        lines.append(decl.text)
    return "\n".join(lines) + "\n"


def make_ffibuilder(result: PipelineResult) -> FFI:
    ffibuilder = FFI()
    ffibuilder.cdef(host_cdef(result))
    ffibuilder.set_source(
        MODULE_NAME,
        SOURCE_CODE,
        include_dirs=[str(result.tree.include_dir)],
        **result.artifact.link_args(),
    )
    return ffibuilder


if __name__ == "__main__":
    ffibuilder = make_ffibuilder(build())
    ffibuilder.compile(verbose=True)
