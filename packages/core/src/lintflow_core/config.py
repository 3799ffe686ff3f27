from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Optional

import yaml

from lintflow_core.errors import ConfigError
from lintflow_core.models import LintEngineConfig, ReviewConfig, VoteConfig

DEFAULT_CONFIG: dict = {
    "review": {
        "host": "http://127.0.0.1",
        "port": 8080,
        "user": "",
        "pass": "",
        "vote": {
            "label": "Code-Review",
            "approval": "+1",
            "disapproval": "-1",
            "approval_message": "Voting Code-Review by lintflow",
            "disapproval_message": "Voting Code-Review by lintflow",
        },
    },
    "lints": [],
    "keep_workspace": False,
}


def load_config(config_path: str = ".lintflow.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .lintflow.yml in the current directory
      3. CLI argument overrides
      4. GERRIT_USER / GERRIT_PASS from the environment
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            try:
                file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"failed to parse {config_path}") from e
        if not isinstance(file_config, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        review = _mapping(file_config.pop("review", None), "review")
        vote = _mapping(review.pop("vote", None), "review.vote")
        config["review"].update(review)
        config["review"]["vote"].update(vote)
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Credentials from the environment win over the file so CI secrets never
    # have to be written to disk.
    if os.environ.get("GERRIT_USER"):
        config["review"]["user"] = os.environ["GERRIT_USER"]
    if os.environ.get("GERRIT_PASS"):
        config["review"]["pass"] = os.environ["GERRIT_PASS"]

    return config


def _mapping(value, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: must be a mapping, got {value!r}")
    return value


def _port(value, where: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where}: port must be an integer, got {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"{where}: port {port} out of range")
    return port


def review_config(config: dict) -> ReviewConfig:
    review = _mapping(config.get("review"), "review")
    if not review.get("host"):
        raise ConfigError("review: host is required")
    vote = _mapping(review.get("vote"), "review.vote")
    defaults = DEFAULT_CONFIG["review"]["vote"]
    return ReviewConfig(
        host=str(review["host"]).rstrip("/"),
        port=_port(review.get("port"), "review"),
        user=review.get("user") or "",
        password=review.get("pass") or "",
        vote=VoteConfig(**{key: str(vote.get(key, default)) for key, default in defaults.items()}),
    )


def lint_configs(config: dict) -> list[LintEngineConfig]:
    """Build the ordered, immutable list of lint engines."""
    lints = config.get("lints") or []
    if not isinstance(lints, list):
        raise ConfigError(f"lints: must be a list, got {lints!r}")
    if not lints:
        raise ConfigError("lints: at least one lint engine is required")

    engines = []
    for index, lint in enumerate(lints):
        if not isinstance(lint, dict):
            raise ConfigError(f"lints[{index}]: must be a mapping, got {lint!r}")
        name = lint.get("name") or f"lint-{index}"
        where = f"lints[{index}] ({name})"
        if not lint.get("host"):
            raise ConfigError(f"{where}: host is required")
        include = _mapping(_mapping(lint.get("filter"), f"{where}.filter").get("include"), f"{where}.filter.include")
        include = include.get("extension") or []
        if not isinstance(include, list):
            raise ConfigError(f"{where}: filter.include.extension must be a list, got {include!r}")
        engines.append(
            LintEngineConfig(
                name=name,
                host=str(lint["host"]),
                port=_port(lint.get("port"), where),
                extensions=tuple(include),
            )
        )
    return engines
