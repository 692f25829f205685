#!/usr/bin/env python3
"""
DISPATCH-CORE — Single-Command Test Runner
==========================================
Run:  python run_tests.py
      python run_tests.py --html       (with HTML report)
      python run_tests.py --quick      (engine tests only, skip API and concurrency)
      python run_tests.py --verbose    (verbose output)
"""

import datetime
import os
import subprocess
import sys

ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
ARTIFACTS_DIR = os.path.join(ROOT_DIR, "test_artifacts")

ENGINE_TESTS = [
    "tests/test_lifecycle.py",
    "tests/test_dispatches.py",
    "tests/test_crew.py",
    "tests/test_fleet.py",
    "tests/test_realtime.py",
]
SLOW_TESTS = [
    "tests/test_invariants.py",
    "tests/test_api.py",
]


def main():
    args = sys.argv[1:]
    quick = "--quick" in args
    html = "--html" in args
    verbose = "--verbose" in args or "-v" in args

    cmd = [sys.executable, "-m", "pytest"]
    cmd.extend(ENGINE_TESTS if quick else ENGINE_TESTS + SLOW_TESTS)
    cmd.append("-v" if verbose else "-q")
    cmd.append("--tb=short")

    report_path = None
    if html:
        ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        report_dir = os.path.join(ARTIFACTS_DIR, ts)
        os.makedirs(report_dir, exist_ok=True)
        report_path = os.path.join(report_dir, "test_report.html")
        cmd.extend(["--html", report_path, "--self-contained-html"])
        print(f"[DISPATCH-CORE] HTML report will be saved to: {report_path}")

    print(f"[DISPATCH-CORE] Running: {' '.join(cmd)}")
    print(f"[DISPATCH-CORE] {'Quick mode (engines only)' if quick else 'Full suite (engines + concurrency + API)'}")
    print()

    result = subprocess.run(cmd, cwd=ROOT_DIR)

    if report_path and result.returncode == 0:
        print(f"\n[DISPATCH-CORE] HTML report: {report_path}")

    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
