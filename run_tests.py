#!/usr/bin/env python3
"""
Run the diettrack test suites.

    python run_tests.py                 # everything
    python run_tests.py unit -x         # unit suite, stop on first failure
    python run_tests.py integration -c  # integration suite with coverage
    python run_tests.py --fast          # skip tests marked slow
"""

import argparse
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).parent

# suite -> (marker expression, path)
SUITES = {
    "all": (None, "tests"),
    "unit": ("unit", "tests/unit"),
    "integration": ("integration", "tests/integration"),
}

COVERAGE_ARGS = [
    "--cov=diettrack",
    "--cov-report=term-missing",
    "--cov-report=html:coverage_html",
]


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run diettrack tests")
    parser.add_argument("suite", nargs="?", choices=sorted(SUITES), default="all")
    parser.add_argument("--coverage", "-c", action="store_true", help="collect coverage")
    parser.add_argument("--min-coverage", type=int, default=50, help="fail under this percentage")
    parser.add_argument("--fast", "-f", action="store_true", help="skip slow tests")
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("--failfast", "-x", action="store_true")
    return parser.parse_args(argv)


def build_command(args: argparse.Namespace) -> list[str]:
    marker, path = SUITES[args.suite]
    if args.fast:
        marker = f"{marker} and not slow" if marker else "not slow"

    cmd = [sys.executable, "-m", "pytest", path]
    if marker:
        cmd += ["-m", marker]
    if args.verbose:
        cmd.append("-v")
    if args.failfast:
        cmd.append("-x")
    if args.coverage:
        cmd += COVERAGE_ARGS + [f"--cov-fail-under={args.min_coverage}"]
    return cmd


def main(argv=None) -> int:
    args = parse_args(argv)
    cmd = build_command(args)
    print(f"$ {' '.join(cmd)}")

    returncode = subprocess.run(cmd, cwd=ROOT).returncode
    if args.coverage and returncode == 0:
        print("HTML coverage report: coverage_html/index.html")
    return returncode


if __name__ == "__main__":
    sys.exit(main())
