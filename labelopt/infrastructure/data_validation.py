from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from labelopt.utils import parse_number

logger = logging.getLogger(__name__)
STRICT_MODE = os.getenv("STRICT_MODE", "false").strip().lower() in {"1", "true", "yes", "on"}


class ValidationError(Exception):
    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        self.message = message
        self.field = field
        self.value = value
        super().__init__(message)


class ValidationSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    sanitized_data: Dict[str, Any]


class FieldValidator:
    def __init__(self, field_name: str, required: bool = False,
                 severity: ValidationSeverity = ValidationSeverity.ERROR, default: Any = None):
        self.field_name = field_name
        self.required = required
        self.severity = severity
        self.default = default

    def validate(self, value: Any, data: Mapping[str, Any]) -> List[str]:
        if _is_blank(value):
            if self.required:
                return [f"Field '{self.field_name}' is required"]
            return []
        return self._validate_field(value, data)

    def _validate_field(self, value: Any, data: Mapping[str, Any]) -> List[str]:
        return []

    def sanitize(self, value: Any) -> Any:
        if _is_blank(value) and self.default is not None:
            return self.default
        return value


class StringValidator(FieldValidator):
    def __init__(self, field_name: str, max_length: Optional[int] = None, pattern: Optional[str] = None,
                 strip: bool = True, **kwargs):
        super().__init__(field_name, **kwargs)
        self.max_length = max_length
        self.pattern = pattern
        self.strip = strip

    def _validate_field(self, value: Any, data: Mapping[str, Any]) -> List[str]:
        errors = []
        str_value = str(value).strip()
        if self.required and not str_value:
            errors.append(f"Field '{self.field_name}' is required")
        if self.max_length and len(str_value) > self.max_length:
            errors.append(f"Field '{self.field_name}' must be at most {self.max_length} characters")
        if self.pattern and str_value and not re.match(self.pattern, str_value):
            errors.append(f"Field '{self.field_name}' does not match required pattern")
        return errors

    def sanitize(self, value: Any) -> Optional[str]:
        if _is_blank(value):
            return str(self.default) if self.default is not None else ""
        return str(value).strip() if self.strip else str(value)


class NumberValidator(FieldValidator):
    """
    Non-negative money/count fields. Spreadsheet text such as "$1,234.50" is
    accepted; anything that does not parse to a finite number is an error.
    """

    def __init__(self, field_name: str, min_value: Optional[float] = 0.0,
                 max_value: Optional[float] = None, integer: bool = False, **kwargs):
        kwargs.setdefault("default", 0)
        super().__init__(field_name, **kwargs)
        self.min_value = min_value
        self.max_value = max_value
        self.integer = integer

    def _validate_field(self, value: Any, data: Mapping[str, Any]) -> List[str]:
        num = parse_number(value, default=math.nan)
        if math.isnan(num):
            return [f"Field '{self.field_name}' must be a valid number"]
        errors = []
        if self.min_value is not None and num < self.min_value:
            errors.append(f"Field '{self.field_name}' must be at least {self.min_value}")
        if self.max_value is not None and num > self.max_value:
            errors.append(f"Field '{self.field_name}' must be at most {self.max_value}")
        return errors

    def sanitize(self, value: Any) -> float:
        num = parse_number(value, default=float(self.default or 0))
        if self.integer:
            return float(math.floor(num))
        return num


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


class DataValidator:
    def __init__(self, validators: Sequence[FieldValidator]):
        self.validators = list(validators)

    def validate(self, data: Mapping[str, Any]) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        sanitized: Dict[str, Any] = dict(data)
        for v in self.validators:
            value = data.get(v.field_name)
            problems = v.validate(value, data)
            if problems:
                if v.severity == ValidationSeverity.ERROR or STRICT_MODE:
                    errors.extend(problems)
                else:
                    warnings.extend(problems)
                    sanitized[v.field_name] = v.sanitize(None)
                continue
            sanitized[v.field_name] = v.sanitize(value)
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, sanitized_data=sanitized)


# Metrics that the optimizer reads must be clean; the rest are informational
# and fall back to 0 with a warning.
CAMPAIGN_VALIDATORS: Sequence[FieldValidator] = (
    StringValidator("campaign_name", required=True, max_length=500),
    StringValidator("label", max_length=200, default="", strip=False),
    NumberValidator("budget", integer=True),
    NumberValidator("cost", integer=True),
    NumberValidator("cost_3d", integer=True),
    NumberValidator("conversions", integer=True),
    NumberValidator("cpa"),
    NumberValidator("tcpa"),
    NumberValidator("label_budget", integer=True),
    NumberValidator("label_remaining_budget"),
    NumberValidator("label_kpi"),
    NumberValidator("mtd_cluster_spend_pct", min_value=None, severity=ValidationSeverity.WARNING),
    NumberValidator("label_cost", integer=True, severity=ValidationSeverity.WARNING),
    NumberValidator("label_cost_3d", integer=True, severity=ValidationSeverity.WARNING),
    NumberValidator("label_conversions", integer=True, severity=ValidationSeverity.WARNING),
    NumberValidator("label_cpa", severity=ValidationSeverity.WARNING),
)

campaign_validator = DataValidator(CAMPAIGN_VALIDATORS)


@dataclass
class RejectedRow:
    row_number: int
    campaign_name: str
    errors: List[str] = field(default_factory=list)


def validate_campaign(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Sanitized copy of a campaign record, or ValidationError with every problem found."""
    result = campaign_validator.validate(record)
    for w in result.warnings:
        logger.debug("Campaign %r: %s", record.get("campaign_name"), w)
    if not result.is_valid:
        raise ValidationError("; ".join(result.errors), value=record.get("campaign_name"))
    return result.sanitized_data
