#!/usr/bin/env python3
"""
Build script for the Lambda deployment package.

All handlers ship in one zip containing the lambda_resilience package and its
runtime dependencies. boto3 and botocore are left out because the Lambda Python
runtime provides them, and so are tests, caches and other files the function
never imports.
"""
import os
import shutil
import subprocess
import sys
import zipfile
from pathlib import Path

PACKAGE_NAME = "lambda_resilience"

# Provided by the Lambda runtime
RUNTIME_PROVIDED = ("boto3", "botocore", "s3transfer", "jmespath", "urllib3", "dateutil", "python_dateutil", "six")

RUNTIME_DEPENDENCIES = [
    "aws-lambda-powertools[tracer]",
    "aws-lambda-env-modeler",
    "pydantic",
]

EXCLUDED_DIRS = {"__pycache__", "tests", "test", ".pytest_cache"}
EXCLUDED_SUFFIXES = (".pyc", ".pyo")


def is_excluded(path: Path) -> bool:
    """Check whether a path should be left out of the archive."""
    for part in path.parts:
        if part in EXCLUDED_DIRS or part.endswith(EXCLUDED_SUFFIXES):
            return True
        if part.split("-")[0] in RUNTIME_PROVIDED:
            return True
    return False


def main():
    """Main build function"""
    project_root = Path(__file__).parent.parent
    package_dir = project_root / "src" / PACKAGE_NAME
    build_dir = project_root / "build"
    zip_path = build_dir / f"{PACKAGE_NAME}.zip"

    build_dir.mkdir(exist_ok=True)

    temp_dir = build_dir / "temp_package"
    if temp_dir.exists():
        shutil.rmtree(temp_dir)
    temp_dir.mkdir()

    print(f"Copying {PACKAGE_NAME}...")
    shutil.copytree(package_dir, temp_dir / PACKAGE_NAME, dirs_exist_ok=True)

    print(f"Installing dependencies: {RUNTIME_DEPENDENCIES}")
    subprocess.run([
        sys.executable, "-m", "pip", "install",
        *RUNTIME_DEPENDENCIES,
        "-t", str(temp_dir),
        "--only-binary=:all:",
        "--platform", "manylinux2014_x86_64",
        "--implementation", "cp",
        "--upgrade",
    ], check=True)

    print(f"Creating {zip_path.name}...")
    skipped = 0
    with zipfile.ZipFile(zip_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for root, _, files in os.walk(temp_dir):
            for file in files:
                file_path = Path(root) / file
                arcname = file_path.relative_to(temp_dir)
                if is_excluded(arcname) or file.endswith(EXCLUDED_SUFFIXES):
                    skipped += 1
                    continue
                zipf.write(file_path, arcname)

    shutil.rmtree(temp_dir)

    print(f"{zip_path.name} created ({zip_path.stat().st_size} bytes, {skipped} files skipped)")
    print("Handlers:")
    for handler in ("record_handler", "queue_worker", "dlq_redrive"):
        print(f"  {PACKAGE_NAME}.handlers.{handler}.lambda_handler")
    print("Build complete!")


if __name__ == "__main__":
    main()
