"""Legacy entry point for launching the BingoBuzz board from a checkout."""

from __future__ import annotations

import os
import sys


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)

    # Check for --debug/--fresh BEFORE any imports that use logging or storage
    if "--debug" in args:
        args.remove("--debug")
        args = ["--log-level", "DEBUG", *args]
    if args and args[0] == "--fresh":
        os.environ["BINGOBUZZ_FRESH"] = "1"
        args.pop(0)

    from bingobuzz.cli import main as cli_main

    return cli_main(args)


if __name__ == "__main__":
    raise SystemExit(main())
