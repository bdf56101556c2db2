"""Tests for command-line handling in the scripts."""
import importlib.util
from pathlib import Path

import pytest

from ragchat import config

SCRIPTS_DIR = Path(__file__).resolve().parents[2] / "scripts"


@pytest.fixture(scope="module")
def chat_script():
    spec = importlib.util.spec_from_file_location("chat_script", SCRIPTS_DIR / "chat.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_environment_degraded_mode_survives_without_flag(chat_script, monkeypatch):
    monkeypatch.setattr(config, "RETRIEVAL_ONLY_FALLBACK", True)

    settings = chat_script.settings_from_args(chat_script.parse_args([]))

    assert settings.retrieval_only_fallback is True


def test_retrieval_only_flag_enables_degraded_mode(chat_script, monkeypatch, tmp_path):
    monkeypatch.setattr(config, "RETRIEVAL_ONLY_FALLBACK", False)

    args = chat_script.parse_args(["--retrieval-only", "--index-dir", str(tmp_path)])
    settings = chat_script.settings_from_args(args)

    assert settings.retrieval_only_fallback is True
    assert settings.index_dir == tmp_path
