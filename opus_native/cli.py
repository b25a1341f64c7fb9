"""
Command-line interface for fetching, configuring and building Opus.

Requires git and a C compiler on PATH (cpp for the bindings step).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from opus_native._internals.bindings.generator import BindingOptions
from opus_native._internals.config import BuildSettings
from opus_native._internals.errors import OpusBuildError
from opus_native.pipeline import OpusBuild


def settings_from_args(args) -> BuildSettings:
    """Environment defaults, overridden by whatever was given on the command line."""
    settings = BuildSettings.from_env()
    if args.source_dir:
        settings.source_dir = Path(args.source_dir)
    if args.out_dir:
        settings.out_dir = Path(args.out_dir)
    if args.version:
        settings.version = args.version
    if args.repository_url:
        settings.repository_url = args.repository_url
    return settings


def _build(args) -> OpusBuild:
    return OpusBuild(settings_from_args(args), verify_cached=not args.no_verify)


def cmd_fetch(args):
    """Make sure the pinned sources are present."""
    tree = _build(args).acquire()
    print(f"Opus {tree.version} at {tree.root}")


def cmd_configure(args):
    """Show the resolved build configuration."""
    config = _build(args).configure()

    if args.json:
        print(json.dumps(config.to_dict(), indent=2))
        return

    print(f"Target: {config.target_arch} ({config.compiler_kind})")
    print(f"SIMD: {'enabled' if config.simd_enabled else 'disabled'}")
    print(f"Features: {', '.join(sorted(config.target_features)) or '(none)'}")
    if config.ambient_features:
        print(f"From CFLAGS: {', '.join(sorted(config.ambient_features))}")
    print("Defines:")
    for define in config.defines:
        print(f"  {define}")
    if config.flags:
        print(f"Flags: {' '.join(config.flags)}")


def cmd_bindings(args):
    """Generate the cffi declaration file only."""
    opus = _build(args)
    tree = opus.acquire()
    output = opus.generate_bindings(tree, BindingOptions(allowlist_recursively=not args.direct_only))
    print(f"{output.path}: {len(output.declarations)} declarations")


def cmd_build(args):
    """Run the whole pipeline."""
    result = _build(args).run()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    print(f"Library:  {result.artifact.path}")
    print(f"Bindings: {result.bindings.path}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="opus-native",
        description="Fetch, compile and generate cffi bindings for the Opus codec",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--source-dir",
        help="Where the Opus sources live (default: $OPUS_SOURCE_DIR or ./opus)",
    )
    common.add_argument(
        "--out-dir",
        help="Build output directory (default: $OPUS_OUT_DIR or ./build/opus)",
    )
    common.add_argument(
        "--version",
        help="Opus tag to build (default: v1.5.2)",
    )
    common.add_argument(
        "--repository-url",
        help="Upstream git repository",
    )
    common.add_argument(
        "--no-verify",
        action="store_true",
        help="Trust an existing source tree without checking its revision",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser(
        "fetch",
        parents=[common],
        help="Clone the pinned Opus sources if they are missing",
    )
    fetch_parser.set_defaults(func=cmd_fetch)

    configure_parser = subparsers.add_parser(
        "configure",
        parents=[common],
        help="Print the defines and flags the build would use",
    )
    configure_parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output configuration as JSON",
    )
    configure_parser.set_defaults(func=cmd_configure)

    bindings_parser = subparsers.add_parser(
        "bindings",
        parents=[common],
        help="Generate the cffi declaration file",
    )
    bindings_parser.add_argument(
        "--direct-only",
        action="store_true",
        help="Only emit declarations written in the four public headers",
    )
    bindings_parser.set_defaults(func=cmd_bindings)

    build_parser = subparsers.add_parser(
        "build",
        parents=[common],
        help="Fetch, compile libopus and generate bindings",
    )
    build_parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON",
    )
    build_parser.set_defaults(func=cmd_build)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except OpusBuildError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
