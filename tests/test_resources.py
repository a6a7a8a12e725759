"""Tests for bundled resource lookup and the override directory."""

import pytest

from content_gates.resources import read_text, read_yaml, resource_path


def test_bundled_prompt_is_found():
    assert "{keyword}" in read_text("prompts/analyze_intent.txt")


def test_missing_resource():
    with pytest.raises(FileNotFoundError):
        resource_path("prompts/nope.txt")


def test_override_wins_per_file(tmp_path, monkeypatch):
    (tmp_path / "prompts").mkdir()
    (tmp_path / "prompts" / "analyze_intent.txt").write_text("custom {keyword}", encoding="utf-8")
    monkeypatch.setenv("CONTENT_GATES_RESOURCE_DIR", str(tmp_path))

    assert read_text("prompts/analyze_intent.txt") == "custom {keyword}"
    # files absent from the override fall back to the bundled copy
    assert "presets" in read_yaml("profiles/presets.yaml")


def test_unknown_override_dir_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("CONTENT_GATES_RESOURCE_DIR", str(tmp_path / "absent"))
    assert resource_path("profiles/presets.yaml").name == "presets.yaml"
