"""Tests for Settings configuration model."""

from pathlib import Path

from clawagent.config import Settings


class TestDefaults:
    def test_agent_loop_defaults(self):
        s = Settings()
        assert s.max_tool_rounds == 8
        assert s.llm_provider == "anthropic"
        assert s.chat_model == "sonnet"

    def test_database_path_is_path(self):
        s = Settings(database_path="custom/memory.db")
        assert s.database_path == Path("custom/memory.db")

    def test_ignores_environment_under_pytest(self, monkeypatch):
        monkeypatch.setenv("MAX_TOOL_ROUNDS", "3")
        assert Settings().max_tool_rounds == 8


class TestMemoryRetention:
    def test_default_is_thirty_days(self):
        assert Settings().memory_retention_ms == 30 * 24 * 60 * 60 * 1000

    def test_custom_days(self):
        assert Settings(memory_retention_days=1).memory_retention_ms == 86_400_000
