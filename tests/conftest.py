"""Pytest fixtures for opus_native tests."""

import re
from pathlib import Path

import pytest

from opus_native._internals.errors import CompilationError
from opus_native._internals.source import GitCommandError, SourceTree

PINNED = "v1.5.2"
PINNED_SHA = "ddbe48383984d56acd9e1ab6a090c54ca6b735a6"

HEADERS = {
    "include/opus_types.h": """\
#ifndef OPUS_TYPES_H
#define OPUS_TYPES_H
#include <stdint.h>
typedef int16_t opus_int16;
typedef int32_t opus_int32;
typedef uint32_t opus_uint32;
#endif
""",
    "include/opus_defines.h": """\
#ifndef OPUS_DEFINES_H
#define OPUS_DEFINES_H
#include "opus_types.h"
#define OPUS_EXPORT
#define OPUS_OK                0
#define OPUS_BAD_ARG          -1
#define OPUS_AUTO             -1000 /**<Auto/default setting @hideinitializer*/
#define OPUS_BITRATE_MAX      (-1)
#define OPUS_SET_BITRATE_REQUEST 4002
#define OPUS_SET_BITRATE(x) OPUS_SET_BITRATE_REQUEST, (x)
const char *opus_strerror(int error);
const char *opus_get_version_string(void);
#endif
""",
    "include/opus.h": """\
#ifndef OPUS_H
#define OPUS_H
#include "opus_defines.h"
#define OPUS_APPLICATION_AUDIO 2049
typedef struct OpusEncoder OpusEncoder;
typedef struct OpusDecoder OpusDecoder;
int opus_encoder_get_size(int channels);
OpusEncoder *opus_encoder_create(opus_int32 Fs, int channels, int application, int *error);
opus_int32 opus_encode(OpusEncoder *st, const opus_int16 *pcm, int frame_size, unsigned char *data, opus_int32 max_data_bytes);
void opus_encoder_destroy(OpusEncoder *st);
#endif
""",
    "include/opus_custom.h": """\
#ifndef OPUS_CUSTOM_H
#define OPUS_CUSTOM_H
#include "opus_defines.h"
typedef struct OpusCustomMode OpusCustomMode;
OpusCustomMode *opus_custom_mode_create(opus_int32 Fs, int frame_size, int *error);
#endif
""",
    "include/opus_multistream.h": """\
#ifndef OPUS_MULTISTREAM_H
#define OPUS_MULTISTREAM_H
#include "opus.h"
typedef struct OpusMSEncoder OpusMSEncoder;
opus_int32 opus_multistream_encoder_get_size(int streams, int coupled_streams);
#endif
""",
    "include/opus_projection.h": """\
#ifndef OPUS_PROJECTION_H
#define OPUS_PROJECTION_H
#include "opus_multistream.h"
typedef struct OpusProjectionEncoder OpusProjectionEncoder;
opus_int32 opus_projection_ambisonics_encoder_get_size(int channels, int mapping_family);
#endif
""",
}

SOURCES = (
    "src/opus.c",
    "src/opus_encoder.c",
    "src/README",
    "celt/bands.c",
    "celt/celt.h",
    "celt/x86/x86cpu.c",
    "silk/enc_API.c",
    "silk/float/encode_frame_FLP.c",
)


def write_tree(root: Path) -> Path:
    """Lay out a miniature Opus checkout under ``root``."""
    for rel, content in HEADERS.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    for rel in SOURCES:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("/* stub */\n")
    return root


def _command(args: list[str]) -> str:
    it = iter(args)
    for arg in it:
        if arg == "-c":
            next(it)
            continue
        if not arg.startswith("-"):
            return arg
    return ""


class FakeGit:
    """Stands in for the git CLI; clone and checkout materialize a tree."""

    def __init__(self, tags=None, fail_on=None, head=None, populate=True):
        self.tags = {PINNED: PINNED_SHA} if tags is None else tags
        self.fail_on = fail_on
        self.head = head
        self.populate = populate
        self.calls = []

    @property
    def commands(self) -> list[str]:
        return [_command(args) for args, _ in self.calls]

    @property
    def network_calls(self) -> int:
        return sum(1 for c in self.commands if c in ("clone", "fetch"))

    def __call__(self, args, cwd=None):
        args = list(args)
        self.calls.append((args, cwd))
        command = _command(args)
        if command == self.fail_on:
            raise GitCommandError(args, 128, f"fatal: {command} failed\n")

        if command == "clone":
            root = Path(args[-1])
            (root / ".git").mkdir(parents=True)
            return ""

        if command == "fetch":
            if args[-1] not in self.tags:
                raise GitCommandError(
                    args, 128, f"fatal: couldn't find remote ref refs/tags/{args[-1]}\n"
                )
            return ""

        if command == "rev-parse":
            ref = args[-1]
            if ref == "HEAD":
                if self.head is None:
                    raise GitCommandError(args, 128, "fatal: ambiguous argument 'HEAD'\n")
                return self.head + "\n"
            tag = ref.removesuffix("^{commit}")
            if tag not in self.tags:
                raise GitCommandError(args, 128, "fatal: Needed a single revision\n")
            return self.tags[tag] + "\n"

        if command == "checkout":
            self.head = args[-1]
            if self.populate:
                write_tree(Path(cwd))
            return ""

        raise AssertionError(f"unexpected git command: {args}")


class FakeToolchain:
    """Records compiler invocations instead of running a compiler."""

    def __init__(self, kind="gnu", fail_with=None):
        self.kind = kind
        self.fail_with = fail_with
        self.compile_calls = []
        self.archive_calls = []

    def compile(self, sources, output_dir, include_dirs, defines, extra_args):
        self.compile_calls.append({
            "sources": list(sources),
            "output_dir": output_dir,
            "include_dirs": list(include_dirs),
            "defines": list(defines),
            "extra_args": list(extra_args),
        })
        if self.fail_with:
            raise CompilationError("compilation", self.fail_with)
        return [str(Path(output_dir) / (Path(s).stem + ".o")) for s in sources]

    def archive(self, objects, name, output_dir):
        self.archive_calls.append((list(objects), name, output_dir))
        path = Path(output_dir) / f"lib{name}.a"
        path.write_bytes(b"!<arch>\n")
        return path


_INCLUDE_RE = re.compile(r'^\s*#\s*include\s+([<"])([^>"]+)[>"]')


class FakePreprocessor:
    """
    Just enough cpp for the test headers.

    Each file is expanded once (like include guards would), other
    directives become blank lines, and line markers keep coordinates right.
    """

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.calls = []

    def __call__(self, source, include_dirs, defines):
        self.calls.append((Path(source), list(include_dirs), list(defines)))
        if self.fail_with:
            from opus_native._internals.errors import BindingGenerationError

            raise BindingGenerationError(Path(source).name, self.fail_with)
        out = []
        self._expand(Path(source), list(include_dirs), set(), out)
        return "\n".join(out) + "\n"

    def _expand(self, path, include_dirs, seen, out):
        path = path.resolve()
        if path in seen:
            return
        seen.add(path)
        out.append(f'# 1 "{path.as_posix()}"')
        for lineno, line in enumerate(path.read_text().splitlines(), start=1):
            match = _INCLUDE_RE.match(line)
            if match:
                local = path.parent if match.group(1) == '"' else None
                self._expand(self._find(match.group(2), local, include_dirs), include_dirs, seen, out)
                out.append(f'# {lineno + 1} "{path.as_posix()}"')
                continue
            out.append("" if line.lstrip().startswith("#") else line)

    @staticmethod
    def _find(name, local, include_dirs):
        if Path(name).is_absolute():
            return Path(name)
        for directory in ([local] if local else []) + include_dirs:
            candidate = Path(directory) / name
            if candidate.is_file():
                return candidate
        raise FileNotFoundError(name)


@pytest.fixture
def opus_tree(tmp_path):
    """A SourceTree over a miniature Opus checkout."""
    root = write_tree(tmp_path / "opus")
    return SourceTree(root=root, version=PINNED)


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def fake_toolchain():
    return FakeToolchain()


@pytest.fixture
def fake_preprocessor():
    return FakePreprocessor()
