#!/usr/bin/env python3
"""Validate local tee-sheet lottery environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from teesheet.domain.constraints import validate_operating_config
from teesheet.repository.data_repository import DataRepository
from teesheet.services.assignment_service import LotteryProcessingService
from teesheet.services.entry_service import EntryService
from teesheet.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
SMOKE_DATE = "2030-01-15"


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="teesheet-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "teesheet_validation.db",
        )

        # CHECK 3: Operating day configuration
        try:
            validate_operating_config(validation_settings.operating_config())
            ok, line = _print_result(
                "Operating day",
                True,
                f": {validation_settings.operating_start_time}-"
                f"{validation_settings.operating_end_time}",
            )
        except ValueError as exc:
            ok, line = _print_result("Operating day", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        repository = DataRepository(validation_settings)

        # CHECK 4: Database initialization and demo roster
        try:
            repository.initialize_database()
            repository.seed_demo_data_if_empty()
            members = repository.get_member_classes()
            if not members:
                raise RuntimeError("demo roster is empty")
            ok, line = _print_result("Database initialization", True, f": {len(members)} members")
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Smoke lottery run
        try:
            entry_service = EntryService(repository=repository, settings=validation_settings)
            processing_service = LotteryProcessingService(
                repository=repository,
                settings=validation_settings,
            )
            submitted_at = datetime.now(timezone.utc)
            for offset, member_id in enumerate(sorted(repository.get_member_classes())[:4]):
                entry_service.submit_entry(
                    lottery_date=SMOKE_DATE,
                    organizer_id=member_id,
                    preferred_window=offset % len(entry_service.windows()),
                    submitted_at=submitted_at + timedelta(seconds=offset),
                )
            summary = processing_service.process_date(SMOKE_DATE)
            if summary.run.assigned_count != summary.run.total_entries:
                raise RuntimeError(
                    f"assigned {summary.run.assigned_count} of {summary.run.total_entries}"
                )
            processing_service.finalize_date(SMOKE_DATE)
            ok, line = _print_result(
                "Smoke lottery",
                True,
                f": {summary.run.assigned_count} entries placed",
            )
        except Exception as exc:
            ok, line = _print_result("Smoke lottery", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Tee-sheet Lottery Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
