"""
Pytest configuration and shared fixtures for the PDF/A conversion service tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pdfa_service.core.startup import ResolvedToolConfig


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def tool_config(scratch_dir: Path) -> ResolvedToolConfig:
    return ResolvedToolConfig(
        executable_path="/fake/bin/gs",
        base_parameters="-dNOPAUSE -dBATCH ",
        timeout_seconds=5,
        temp_directory=str(scratch_dir),
    )
