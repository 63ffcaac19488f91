"""Shared fixtures for deltasync tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all deltasync runtime files to a temporary directory.

    Patches ``deltasync.config.get_base_dir`` (and the re-imported reference in
    ``deltasync.cli``) so that nothing touches the real ``~/.deltasync/``.
    """
    fake_base = tmp_path / ".deltasync"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("deltasync.config.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("deltasync.cli.get_base_dir", lambda: fake_base)

    return fake_base
