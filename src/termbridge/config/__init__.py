"""Configuration — Pydantic models for termbridge settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_FORWARD_ENV = ("RAG_API_KEY", "RAG_API_ADDR")


class TargetConfig(BaseModel):
    """Execution target: the container every session shell runs in.

    ``container_name`` doubles as the prompt sentinel. It is embedded at the
    end of the shell prompt so output chunks containing it mark the point
    where the shell is ready for the next command.
    """

    container: str | None = Field(
        default=None, description="Container to `docker exec` into. None disables spawning."
    )
    container_name: str = Field(
        default="docker-terminal",
        description="Label shown in the prompt; used as the command-completion sentinel",
    )
    shell: str = Field(default="/bin/bash")
    exec_flags: str = Field(default="-it", description="Flags passed to `docker exec`")
    term: str = Field(default="xterm-256color")
    cwd: str | None = Field(
        default=None, description="Host working directory for the docker client"
    )
    forward_env: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FORWARD_ENV),
        description="Host env vars forwarded into the container with `-e`",
    )
    cols: int = Field(default=100)
    rows: int = Field(default=30)

    @property
    def sentinel(self) -> str:
        return self.container_name


class ExecutorConfig(BaseModel):
    """Agent command execution limits."""

    timeout_ms: int = Field(default=30_000, description="Default per-command timeout")
    max_lines: int = Field(default=30, description="Maximum lines of returned output")
    max_chars: int = Field(default=1000, description="Maximum characters of returned output")
    prompt_timeout: float = Field(
        default=5.0, description="Seconds to wait for the first prompt of a new session"
    )


class StatusConfig(BaseModel):
    """Command status stream settings."""

    heartbeat_interval: float = Field(
        default=30.0, description="Seconds between keep-alive pings per subscriber"
    )


class TermbridgeConfig(BaseModel):
    """Top-level termbridge configuration."""

    target: TargetConfig = Field(default_factory=TargetConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> TermbridgeConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            DOCKER_CONTAINER               - Container sessions are spawned in
            DOCKER_CONTAINER_NAME          - Prompt label / completion sentinel
            DOCKER_SHELL                   - Shell to run inside the container
            DOCKER_EXEC_FLAGS              - Flags for `docker exec` (default -it)
            DOCKER_TERM                    - TERM for the session
            TERMBRIDGE_FORWARD_ENV         - Comma separated env vars to forward
            TERMBRIDGE_COMMAND_TIMEOUT     - Default agent command timeout (ms)
            TERMBRIDGE_HEARTBEAT_INTERVAL  - Status stream keep-alive (seconds)
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        target = config_data.get("target", {})
        env_map = {
            "DOCKER_CONTAINER": "container",
            "DOCKER_CONTAINER_NAME": "container_name",
            "DOCKER_SHELL": "shell",
            "DOCKER_EXEC_FLAGS": "exec_flags",
            "DOCKER_TERM": "term",
        }
        for env_var, key in env_map.items():
            value = os.environ.get(env_var)
            if value:
                target[key] = value

        env_forward = os.environ.get("TERMBRIDGE_FORWARD_ENV")
        if env_forward is not None:
            target["forward_env"] = [v.strip() for v in env_forward.split(",") if v.strip()]

        if target:
            config_data["target"] = target

        env_timeout = os.environ.get("TERMBRIDGE_COMMAND_TIMEOUT")
        if env_timeout:
            config_data.setdefault("executor", {})["timeout_ms"] = int(env_timeout)

        env_heartbeat = os.environ.get("TERMBRIDGE_HEARTBEAT_INTERVAL")
        if env_heartbeat:
            config_data.setdefault("status", {})["heartbeat_interval"] = float(
                env_heartbeat
            )

        return cls.model_validate(config_data)
