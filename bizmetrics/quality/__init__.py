"""
Data Quality Module
"""
from .validators import DataValidator, ValidationResult, ValidationSeverity, ValidationStatus

__all__ = [
    "DataValidator",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
]
