#!/usr/bin/env python3
"""
Build script for agentloop.

Usage: python scripts/build.py [check|build|clean|test|lint]
"""

import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parent.parent

CHECKS = [
    ("📋 Running linter", ["ruff", "check", "src/", "tests/"]),
    ("🔍 Running type checker", ["mypy", "src/"]),
    ("🧪 Running tests", ["pytest", "tests/"]),
]

ARTIFACTS = [
    "build",
    "dist",
    "*.egg-info",
    "**/__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
]


def run_command(command: List[str], cwd: Optional[Path] = None) -> int:
    """Run a command and return its exit code."""
    print(f"Running: {' '.join(command)}")
    result = subprocess.run(command, cwd=cwd or ROOT)
    return result.returncode


def check() -> int:
    """Run linter, type checker and tests."""
    for title, command in CHECKS:
        print(f"\n{title}...")
        if run_command(command) != 0:
            print(f"❌ {title.split(' ', 1)[1]} failed")
            return 1
    return 0


def build_package() -> int:
    """Check the project and build the wheel and sdist."""
    print("🏗️  Building agentloop...")
    if check() != 0:
        return 1

    print("\n📦 Building package...")
    if run_command([sys.executable, "-m", "build"]) != 0:
        print("❌ Package build failed")
        return 1

    print("\n✅ Build completed successfully!")
    return 0


def clean() -> int:
    """Remove build artifacts and caches."""
    print("🧹 Cleaning build artifacts...")
    for pattern in ARTIFACTS:
        for path in ROOT.glob(pattern):
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
    print("✅ Clean completed!")
    return 0


def test() -> int:
    """Run the test suite."""
    return run_command(["pytest", "tests/", "-v"])


def lint() -> int:
    """Run the linter with auto-fix, then the formatter."""
    result = run_command(["ruff", "check", "--fix", "src/", "tests/"])
    if result != 0:
        return result
    return run_command(["ruff", "format", "src/", "tests/"])


COMMANDS = {
    "check": check,
    "build": build_package,
    "clean": clean,
    "test": test,
    "lint": lint,
}


def main() -> None:
    """Main entry point."""
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print(f"Usage: python scripts/build.py [{'|'.join(COMMANDS)}]")
        sys.exit(1)
    sys.exit(COMMANDS[sys.argv[1]]())


if __name__ == "__main__":
    main()
