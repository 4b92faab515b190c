"""Evaluator interface, LiteLLM adapter and TOML config loaders."""

from jurybox.providers.base import Evaluator
from jurybox.providers.registry import load_evaluator_config, load_judges, load_orchestrator_config

__all__ = [
    "Evaluator",
    "load_evaluator_config",
    "load_judges",
    "load_orchestrator_config",
]
