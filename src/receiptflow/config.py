"""
ReceiptFlow configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_TRUTHY = ("1", "true", "yes", "on")


class ClassificationConfig(BaseModel):
    """Rule handling for the classifier."""

    strict_rules: bool = Field(
        default=True,
        description="Reject rules with malformed literals when they are saved",
    )
    rules_file: str | None = Field(default=None, description="YAML/JSON file with classification rules")
    use_default_rules: bool = Field(default=False, description="Load the built-in system rules")


class LimitOverride(BaseModel):
    """Per receipt type replacement for the built-in spending limits."""

    single_limit: float | None = Field(default=None, ge=0.0)
    monthly_limit: float | None = Field(default=None, ge=0.0)


class ComplianceConfig(BaseModel):
    """Compliance scoring settings."""

    amount_tolerance: float = Field(default=0.01, ge=0.0)
    max_date_span_days: int = Field(default=30, ge=0)
    error_penalty: int = Field(default=20, ge=0)
    warning_penalty: int = Field(default=5, ge=0)
    limits: dict[str, LimitOverride] = Field(
        default_factory=dict,
        description="Limit overrides keyed by receipt type name, e.g. DINING",
    )


class WorkflowConfig(BaseModel):
    """Reimbursement workflow settings."""

    revalidate_on_resubmit: bool = Field(
        default=False,
        description="Run the compliance gate again when a revision is resubmitted",
    )


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(default="%(message)s")


class ReceiptFlowConfig(BaseModel):
    """Root configuration for ReceiptFlow."""

    classification: ClassificationConfig = Field(default_factory=ClassificationConfig)
    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    currency: str = Field(default="CNY")

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> ReceiptFlowConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        env_level = os.environ.get("RECEIPTFLOW_LOG_LEVEL")
        env_strict = os.environ.get("RECEIPTFLOW_STRICT_RULES")
        env_revalidate = os.environ.get("RECEIPTFLOW_REVALIDATE_ON_RESUBMIT")
        env_currency = os.environ.get("RECEIPTFLOW_CURRENCY")

        if env_level:
            logging_section = data.get("logging", {})
            logging_section["level"] = env_level.upper()
            data["logging"] = logging_section

        if env_strict:
            classification = data.get("classification", {})
            classification["strict_rules"] = env_strict.lower() in _TRUTHY
            data["classification"] = classification

        if env_revalidate:
            workflow = data.get("workflow", {})
            workflow["revalidate_on_resubmit"] = env_revalidate.lower() in _TRUTHY
            data["workflow"] = workflow

        if env_currency:
            data["currency"] = env_currency

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
