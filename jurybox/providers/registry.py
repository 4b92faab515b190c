"""Judge registry and TOML configuration loader.

Loads judge definitions from judges.toml and orchestrator/evaluator
defaults from defaults.toml.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from jurybox.errors import ConfigurationError
from jurybox.schemas.consensus import AgentReputation
from jurybox.schemas.evaluation import EvaluatorConfig, JudgeAgent
from jurybox.schemas.session import OrchestratorConfig

# Default config directory relative to the jurybox package
_CONFIG_DIR = Path(__file__).parent.parent / "config"


def _load_toml(path: Path, what: str) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"{what} not found: {path}")
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_orchestrator_config(
    config_path: Path | None = None,
    **overrides: Any,
) -> OrchestratorConfig:
    """Load orchestrator defaults from the [orchestrator] table.

    Args:
        config_path: Path to defaults.toml. Defaults to jurybox/config/defaults.toml.
        **overrides: Values that replace the file's settings.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If a value is out of range or unknown.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    raw = _load_toml(path, "Orchestrator config")
    section = {**raw.get("orchestrator", {}), **overrides}
    try:
        return OrchestratorConfig(**section)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid orchestrator config in {path}",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


def load_evaluator_config(config_path: Path | None = None) -> EvaluatorConfig:
    """Load LiteLLM evaluator settings from the [evaluator] table.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If a value is invalid.
    """
    path = config_path or _CONFIG_DIR / "defaults.toml"
    raw = _load_toml(path, "Evaluator config")
    try:
        return EvaluatorConfig(**raw.get("evaluator", {}))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid evaluator config in {path}",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


def load_judges(config_path: Path | None = None) -> dict[str, JudgeAgent]:
    """Load the judge registry from a TOML file.

    Each [judges.<id>] table becomes a JudgeAgent with agent_id <id>;
    a nested reputation table feeds AgentReputation.

    Args:
        config_path: Path to judges.toml. Defaults to jurybox/config/judges.toml.

    Returns:
        Dictionary mapping agent ids to JudgeAgent instances.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If the [judges] section is missing or invalid.
    """
    path = config_path or _CONFIG_DIR / "judges.toml"
    raw = _load_toml(path, "Judge registry")

    judges_section = raw.get("judges")
    if not judges_section or not isinstance(judges_section, dict):
        raise ConfigurationError(f"No [judges] section found in {path}")

    registry: dict[str, JudgeAgent] = {}
    for agent_id, entry in judges_section.items():
        if not isinstance(entry, dict):
            continue
        entry = dict(entry)
        reputation_data = entry.pop("reputation", {})
        try:
            registry[agent_id] = JudgeAgent(
                agent_id=agent_id,
                reputation=AgentReputation(**reputation_data),
                **entry,
            )
        except (TypeError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid judge {agent_id!r} in {path}: {e}",
            ) from e

    return registry
