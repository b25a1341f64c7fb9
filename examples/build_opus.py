"""
Build libopus and its cffi declarations into ./build/opus.

Usage:
    uv run python examples/build_opus.py
    OPUS_SIMD_ENABLE=1 uv run python examples/build_opus.py
"""

import logging
import sys

from opus_native import BuildSettings, OpusBuildError, build


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    settings = BuildSettings.from_env()

    try:
        result = build(settings)
    except OpusBuildError as e:
        print(f"Build failed: {e}", file=sys.stderr)
        return 1

    print(f"Opus {result.tree.version}")
    print(f"  defines:  {' '.join(result.config.defines)}")
    print(f"  library:  {result.artifact.path}")
    print(f"  bindings: {result.bindings.path} ({len(result.bindings.declarations)} declarations)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
