# main.py
"""CLI entry point for pagewright."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def main() -> None:
    """Parse command-line arguments and run the manifest."""
    parser = argparse.ArgumentParser(
        prog="pagewright", description="Run a YAML manifest of generation operations."
    )
    parser.add_argument("manifest", help="Path to the operations manifest (.yaml)")
    parser.add_argument("--output", default=None, help="Write results as JSON to this path")
    args = parser.parse_args()
    sys.exit(run(args.manifest, args.output))


if __name__ == "__main__":
    main()
