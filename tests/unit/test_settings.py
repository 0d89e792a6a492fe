"""Unit tests for MissionforceSettings."""

import pytest

from missionforce.application.settings import MissionforceSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CODEX_BIN",
        "CODEX_WORKDIR",
        "CODEX_PROFILE",
        "CODEX_DEBUG",
        "DEBUG",
        "CODEX_RUN_TIMEOUT",
        "CODEX_ORCHESTRATOR_PLANNING_PROMPT",
        "CODEX_ORCHESTRATOR_MAX_PLAN_ATTEMPTS",
        "CODEX_ORCHESTRATOR_MAX_AGENT_ATTEMPTS",
        "HOST",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self):
        settings = MissionforceSettings()
        assert settings.codex_bin == "codex"
        assert settings.profile == "gpt-oss-20b-lms"
        assert settings.debug is True
        assert settings.max_plan_attempts == 4
        assert settings.max_agent_attempts == 3
        assert settings.port == 4300
        assert settings.global_args == [
            "--profile",
            "gpt-oss-20b-lms",
            "--dangerously-bypass-approvals-and-sandbox",
        ]

    def test_sandbox_flag_can_be_disabled(self):
        settings = MissionforceSettings(profile="local", bypass_sandbox=False)
        assert settings.global_args == ["--profile", "local"]


class TestEnvironment:
    def test_codex_names(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CODEX_BIN", "/opt/codex")
        monkeypatch.setenv("CODEX_WORKDIR", str(tmp_path))
        monkeypatch.setenv("CODEX_PROFILE", "gpt-5")
        monkeypatch.setenv("CODEX_ORCHESTRATOR_MAX_AGENT_ATTEMPTS", "5")
        monkeypatch.setenv("PORT", "8080")

        settings = MissionforceSettings()

        assert settings.codex_bin == "/opt/codex"
        assert settings.resolved_working_directory == str(tmp_path.resolve())
        assert settings.global_args[:2] == ["--profile", "gpt-5"]
        assert settings.max_agent_attempts == 5
        assert settings.port == 8080

    @pytest.mark.parametrize("name", ["CODEX_DEBUG", "DEBUG"])
    def test_debug_aliases(self, monkeypatch, name):
        monkeypatch.setenv(name, "false")
        assert MissionforceSettings().debug is False


class TestYamlFiles:
    def test_file_values_merge_with_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CODEX_PROFILE", "from-env")
        path = tmp_path / "missionforce.yaml"
        path.write_text("codex_bin: codex-dev\nmax_plan_attempts: 2\nexec_args:\n  - --json\n")

        loaded = MissionforceSettings.load_from_file(path)

        assert loaded.codex_bin == "codex-dev"
        assert loaded.max_plan_attempts == 2
        assert loaded.exec_args == ["--json"]
        assert loaded.profile == "from-env"

    def test_empty_file_uses_environment(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert MissionforceSettings.load_from_file(path).max_agent_attempts == 3

    def test_missing_file_uses_defaults(self, tmp_path):
        assert MissionforceSettings.load_from_file(tmp_path / "nope.yaml").codex_bin == "codex"
