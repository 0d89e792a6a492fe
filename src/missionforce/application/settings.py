"""
Configuration management for missionforce.

Settings come from environment variables (and a `.env` file), optionally
overridden by a YAML file. Environment names follow the Codex CLI
conventions, e.g. CODEX_BIN, CODEX_WORKDIR, CODEX_PROFILE, CODEX_DEBUG.
"""

import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissionforceSettings(BaseSettings):
    """Runtime settings with environment variable support."""

    # Executor
    codex_bin: str = Field(
        default="codex",
        validation_alias=AliasChoices("CODEX_BIN", "codex_bin"),
        description="Codex CLI binary",
    )
    working_directory: str = Field(
        default_factory=os.getcwd,
        validation_alias=AliasChoices("CODEX_WORKDIR", "working_directory"),
        description="Working directory for spawned Codex processes",
    )
    profile: str = Field(
        default="gpt-oss-20b-lms",
        validation_alias=AliasChoices("CODEX_PROFILE", "profile"),
        description="Codex profile passed via --profile",
    )
    bypass_sandbox: bool = Field(
        default=True,
        validation_alias=AliasChoices("CODEX_BYPASS_SANDBOX", "bypass_sandbox"),
        description="Pass --dangerously-bypass-approvals-and-sandbox",
    )
    exec_args: List[str] = Field(
        default_factory=lambda: ["--json", "--skip-git-repo-check"],
        description="Flags for the exec subcommand",
    )
    run_timeout: float = Field(
        default=300.0,
        validation_alias=AliasChoices("CODEX_RUN_TIMEOUT", "run_timeout"),
        description="Seconds before a single Codex run is terminated",
    )
    completion_grace: float = Field(
        default=0.2, description="Seconds between logical completion and SIGTERM"
    )

    # Orchestrator
    planning_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CODEX_ORCHESTRATOR_PLANNING_PROMPT", "planning_prompt"),
        description="Planner persona header (None uses the built-in header)",
    )
    max_plan_attempts: int = Field(
        default=4,
        ge=1,
        validation_alias=AliasChoices("CODEX_ORCHESTRATOR_MAX_PLAN_ATTEMPTS", "max_plan_attempts"),
    )
    max_agent_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices(
            "CODEX_ORCHESTRATOR_MAX_AGENT_ATTEMPTS", "max_agent_attempts"
        ),
    )

    # Debug settings
    debug: bool = Field(
        default=True,
        validation_alias=AliasChoices("CODEX_DEBUG", "DEBUG", "debug"),
        description="Verbose protocol and orchestration traces",
    )

    # Server
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("HOST", "host"))
    port: int = Field(default=4300, validation_alias=AliasChoices("PORT", "port"))

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def global_args(self) -> List[str]:
        """Global Codex flags derived from the profile and sandbox policy."""
        args = ["--profile", self.profile]
        if self.bypass_sandbox:
            args.append("--dangerously-bypass-approvals-and-sandbox")
        return args

    @property
    def resolved_working_directory(self) -> str:
        return str(Path(self.working_directory).expanduser().resolve())

    @classmethod
    def load_from_file(cls, config_path: Path) -> "MissionforceSettings":
        """Load settings from a YAML file; missing files yield env defaults."""
        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            config_data: dict[str, Any] = yaml.safe_load(f) or {}

        return cls(**config_data)
