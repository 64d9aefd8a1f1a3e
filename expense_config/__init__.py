"""
expense_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``WorkflowConfig``.

Architecture position:
    Configuration -- sits above ``expense_kernel`` and below
    ``expense_services``.  The kernel MUST NEVER import from
    ``expense_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- schema or structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``EXPENSE_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying decisions to the settings that governed them.
"""

from __future__ import annotations

from pathlib import Path

from expense_config.loader import load_yaml_file, parse_config, validate_config
from expense_config.schema import (
    CompanyRuleSet,
    ExchangeRateDef,
    RuleDefinition,
    SequentialApproverDef,
    SmtpSettings,
    WorkflowConfig,
)
from expense_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the packaged
            ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    try:
        config = parse_config(load_yaml_file(path))
    except KeyError as exc:
        raise ValueError(f"Configuration {path} is missing required key {exc}") from exc

    errors = validate_config(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    _logger.info(
        "EXPENSE_CONFIG_TRACE",
        extra={
            "trace_type": "EXPENSE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "config_checksum": config.checksum,
            "config_path": str(path),
            "company_rule_sets": len(config.company_rules),
        },
    )
    return config


__all__ = [
    "CompanyRuleSet",
    "DEFAULT_CONFIG_PATH",
    "ExchangeRateDef",
    "RuleDefinition",
    "SequentialApproverDef",
    "SmtpSettings",
    "WorkflowConfig",
    "get_active_config",
]
