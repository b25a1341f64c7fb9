"""Tests for the cffi host build script."""

from dataclasses import replace

import pytest

from conftest import PINNED, FakeGit, FakePreprocessor, FakeToolchain
from opus_native._internals.bindings.ffi_build import MODULE_NAME, host_cdef, make_ffibuilder
from opus_native._internals.config import BuildSettings
from opus_native.pipeline import OpusBuild


@pytest.fixture
def result(tmp_path):
    settings = BuildSettings(source_dir=tmp_path / "opus", out_dir=tmp_path / "out", version=PINNED)
    opus = OpusBuild(
        settings,
        runner=FakeGit(),
        toolchain=FakeToolchain(),
        preprocessor=FakePreprocessor(),
    )
    return opus.run(environ={"OPUS_TARGET_ARCH": "x86_64"})


def test_custom_mode_functions_left_out(result):
    cdef = host_cdef(result)
    assert "opus_custom_mode_create" not in cdef
    assert "typedef struct OpusCustomMode OpusCustomMode;" in cdef
    assert "opus_encoder_create" in cdef


def test_custom_mode_functions_kept_with_custom_modes(result):
    config = replace(result.config, defines=result.config.defines + ("CUSTOM_MODES",))
    cdef = host_cdef(replace(result, config=config))
    assert "opus_custom_mode_create" in cdef


def test_make_ffibuilder_links_static_library(result):
    ffibuilder = make_ffibuilder(result)
    module_name, source, _, kwds = ffibuilder._assigned_source
    assert module_name == MODULE_NAME
    assert '#include "opus.h"' in source
    assert kwds["libraries"] == ["opus"]
    assert kwds["library_dirs"] == [str(result.artifact.library_dir)]
    assert kwds["include_dirs"] == [str(result.tree.include_dir)]
