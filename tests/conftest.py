from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def session_store(tmp_path, monkeypatch):
    """Point the JSON session store at a throwaway file for every test."""
    path = tmp_path / "session.json"
    monkeypatch.setenv("ESTATE_SESSION_PATH", str(path))
    return path
