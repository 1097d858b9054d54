"""Classification package — rules, condition evaluation and archive numbering."""
from receiptflow.classification.archive import ArchiveBucket, ArchiveNumberGenerator
from receiptflow.classification.classifier import (
    BatchClassificationResult,
    ClassificationResult,
    Classifier,
)
from receiptflow.classification.conditions import ConditionEvaluator
from receiptflow.classification.rule_store import (
    DEFAULT_RULES,
    RuleStore,
    create_default_rule_store,
)

__all__ = [
    "ArchiveBucket",
    "ArchiveNumberGenerator",
    "BatchClassificationResult",
    "ClassificationResult",
    "Classifier",
    "ConditionEvaluator",
    "DEFAULT_RULES",
    "RuleStore",
    "create_default_rule_store",
]
