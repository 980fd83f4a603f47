"""Runner configuration: YAML settings plus credentials from the environment.

The configuration is built once by the CLI and handed to every component that
needs it. Components never read environment variables on their own.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import dotenv_values

from .errors import ConfigurationError
from .tools.path_guard import DEFAULT_ALLOWED_PREFIXES, DEFAULT_FORBIDDEN_PREFIXES, PathPolicy
from .tools.shell import split_command

DEFAULT_CONFIG_NAME = "feature-agent.yaml"
DEFAULT_ENV_FILES = (".env.local", ".env")

ENV_SUPABASE_URL = "SUPABASE_URL"
ENV_SUPABASE_KEY = "SUPABASE_SERVICE_ROLE_KEY"
ENV_OPENAI_KEY = "OPENAI_API_KEY"
REQUIRED_ENV = (ENV_SUPABASE_URL, ENV_SUPABASE_KEY, ENV_OPENAI_KEY)

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "repo_root": ".",
    "policy": {
        "allowed_prefixes": list(DEFAULT_ALLOWED_PREFIXES),
        "forbidden_prefixes": list(DEFAULT_FORBIDDEN_PREFIXES),
    },
    "commands": {
        "lint": "npm run lint",
        "test": "npm test",
    },
    "lint_loop": {
        "max_attempts": 3,
    },
    "git": {
        "remote": "origin",
        "branch_prefix": "agent",
        "commit_template": "Agent: {title}",
    },
    "paths": {
        "summary_dir": "docs/agent-runs",
    },
    "models": {
        "default": "gpt-4.1-mini",
        "timeout": 120,
    },
    "store": {
        "table": "feature_requests",
    },
}


@dataclass(slots=True)
class Credentials:
    """Secrets for the record store and the completion service."""

    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    openai_api_key: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "Credentials":
        def _get(name: str) -> Optional[str]:
            value = environ.get(name)
            if value is None:
                return None
            value = value.strip()
            return value or None

        return cls(
            supabase_url=_get(ENV_SUPABASE_URL),
            supabase_service_role_key=_get(ENV_SUPABASE_KEY),
            openai_api_key=_get(ENV_OPENAI_KEY),
        )

    def missing(self) -> List[str]:
        values = {
            ENV_SUPABASE_URL: self.supabase_url,
            ENV_SUPABASE_KEY: self.supabase_service_role_key,
            ENV_OPENAI_KEY: self.openai_api_key,
        }
        return [name for name in REQUIRED_ENV if not values[name]]


@dataclass(slots=True)
class RunnerConfig:
    """Settings shared by the runner components."""

    repo_root: Path
    credentials: Credentials = field(default_factory=Credentials)
    policy: PathPolicy = field(default_factory=PathPolicy)
    lint_command: Tuple[str, ...] = ("npm", "run", "lint")
    test_command: Tuple[str, ...] = ("npm", "test")
    max_lint_attempts: int = 3
    remote: str = "origin"
    branch_prefix: str = "agent"
    commit_template: str = "Agent: {title}"
    summary_dir: str = "docs/agent-runs"
    model: str = "gpt-4.1-mini"
    model_timeout: float = 120.0
    table: str = "feature_requests"

    def require_credentials(self) -> Credentials:
        """Raise :class:`ConfigurationError` naming every missing credential."""
        missing = self.credentials.missing()
        if missing:
            raise ConfigurationError(
                f"Missing {' or '.join(missing)} in env.",
                details={"missing": missing},
            )
        return self.credentials

    def commit_message(self, title: str) -> str:
        try:
            return self.commit_template.format(title=title)
        except (KeyError, IndexError, ValueError):
            return f"Agent: {title}"

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        base_dir: Path,
        credentials: Credentials | None = None,
    ) -> "RunnerConfig":
        merged = _merge(copy.deepcopy(DEFAULT_CONFIG_TEMPLATE), data)

        repo_root = Path(str(merged.get("repo_root") or "."))
        if not repo_root.is_absolute():
            repo_root = (base_dir / repo_root).resolve()

        policy_cfg = _section(merged, "policy")
        commands_cfg = _section(merged, "commands")
        loop_cfg = _section(merged, "lint_loop")
        git_cfg = _section(merged, "git")
        paths_cfg = _section(merged, "paths")
        models_cfg = _section(merged, "models")
        store_cfg = _section(merged, "store")

        max_attempts = loop_cfg.get("max_attempts")
        if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
            raise ConfigurationError(f"lint_loop.max_attempts must be a positive integer, got {max_attempts!r}")

        timeout = models_cfg.get("timeout")
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError(f"models.timeout must be a positive number, got {timeout!r}")

        return cls(
            repo_root=repo_root,
            credentials=credentials or Credentials(),
            policy=PathPolicy.from_values(
                _string_list(policy_cfg, "allowed_prefixes"),
                _string_list(policy_cfg, "forbidden_prefixes"),
            ),
            lint_command=_command(commands_cfg, "lint"),
            test_command=_command(commands_cfg, "test"),
            max_lint_attempts=max_attempts,
            remote=str(git_cfg.get("remote") or "origin"),
            branch_prefix=str(git_cfg.get("branch_prefix") or ""),
            commit_template=str(git_cfg.get("commit_template") or "Agent: {title}"),
            summary_dir=str(paths_cfg.get("summary_dir") or "docs/agent-runs"),
            model=str(models_cfg.get("default") or "gpt-4.1-mini"),
            model_timeout=float(timeout),
            table=str(store_cfg.get("table") or "feature_requests"),
        )


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = value
    return base


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"Config section '{name}' must be a mapping.")
    return value


def _string_list(section: Mapping[str, Any], key: str) -> Optional[List[str]]:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"Config key '{key}' must be a list of strings.")
    return [str(item) for item in value]


def _command(section: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = section.get(key)
    if isinstance(value, str) and value.strip():
        return split_command(value)
    if isinstance(value, (list, tuple)) and value:
        return split_command([str(item) for item in value])
    raise ConfigurationError(f"commands.{key} must be a non-empty command string or list.")


def load_yaml_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk; a missing file yields an empty mapping."""
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigurationError(f"Failed to parse config {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a mapping at the top level.")
    return data


def load_environment(
    env_files: Tuple[Path, ...],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Merge dotenv files under the process environment (process values win)."""
    merged: Dict[str, str] = {}
    for env_file in reversed(env_files):
        if env_file.is_file():
            merged.update({key: value for key, value in dotenv_values(env_file).items() if value is not None})
    merged.update(os.environ if environ is None else environ)
    return merged


def load_config(
    config_path: Path | str = DEFAULT_CONFIG_NAME,
    *,
    env_file: Path | str | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunnerConfig:
    """Build a :class:`RunnerConfig` from ``config_path`` and the environment.

    ``env_file`` overrides the default lookup of ``.env.local`` then ``.env``
    next to the config file. Earlier files take precedence over later ones.
    """

    path = Path(config_path)
    data = load_yaml_config(path)
    base_dir = path.resolve().parent
    if env_file is not None:
        env_files: Tuple[Path, ...] = (Path(env_file),)
    else:
        env_files = tuple(base_dir / name for name in DEFAULT_ENV_FILES)
    credentials = Credentials.from_environ(load_environment(env_files, environ))
    return RunnerConfig.from_mapping(data, base_dir=base_dir, credentials=credentials)


__all__ = [
    "Credentials",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "REQUIRED_ENV",
    "RunnerConfig",
    "load_config",
    "load_environment",
    "load_yaml_config",
]
