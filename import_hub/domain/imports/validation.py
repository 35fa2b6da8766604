"""
Rule-driven validation of a mapped dataset.

Per mapped field and row, checks run in a fixed order:

1. required and empty -> error, no further checks for that cell
2. empty and not required -> no further checks
3. numeric, 4. email, 5. phone -> error
6. date -> warning only (unparsable dates are treated as formatting noise)
7. min length, 8. max length, 9. pattern, 10. allowed values,
11. custom validator -> error

Dataset-level checks run afterwards: duplicate detection over the
unique-candidate fields and "not mapped but has data" warnings.
Validation never mutates its inputs.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Sequence, Set, Tuple, Union

from import_hub.core.config import settings
from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.mapper import FieldMapping, has_data, unmapped_fields_with_data
from import_hub.domain.imports.validators import (
    compile_pattern,
    is_valid_date,
    is_valid_email,
    is_valid_number,
    is_valid_phone,
)

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"

# Target fields whose values must not repeat within one file.
DEFAULT_UNIQUE_FIELDS: Tuple[str, ...] = ("codigo", "nombre")

CustomValidator = Callable[[Any, Mapping[str, Any]], Optional[str]]


@dataclass
class ValidationRuleSet:
    """Validation constraints for one target table, keyed by target field."""
    required: Set[str] = field(default_factory=set)
    numeric: Set[str] = field(default_factory=set)
    email: Set[str] = field(default_factory=set)
    phone: Set[str] = field(default_factory=set)
    date: Set[str] = field(default_factory=set)
    min_length: Dict[str, int] = field(default_factory=dict)
    max_length: Dict[str, int] = field(default_factory=dict)
    pattern: Dict[str, Union[str, Pattern[str]]] = field(default_factory=dict)
    allowed_values: Dict[str, Sequence[Any]] = field(default_factory=dict)
    custom_validators: Dict[str, CustomValidator] = field(default_factory=dict)
    unique_fields: Tuple[str, ...] = DEFAULT_UNIQUE_FIELDS

    def __post_init__(self):
        self.required = set(self.required)
        self.numeric = set(self.numeric)
        self.email = set(self.email)
        self.phone = set(self.phone)
        self.date = set(self.date)
        self.pattern = {name: compile_pattern(value) for name, value in self.pattern.items()}
        self.unique_fields = tuple(self.unique_fields)

    def to_snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy stored on the job; custom validators are recorded by field only."""
        return {
            "required": sorted(self.required),
            "numeric": sorted(self.numeric),
            "email": sorted(self.email),
            "phone": sorted(self.phone),
            "date": sorted(self.date),
            "min_length": dict(self.min_length),
            "max_length": dict(self.max_length),
            "pattern": {name: compiled.pattern for name, compiled in self.pattern.items()},
            "allowed_values": {name: list(values) for name, values in self.allowed_values.items()},
            "custom_validators": sorted(self.custom_validators),
            "unique_fields": list(self.unique_fields),
        }


@dataclass
class ValidationIssue:
    row: int  # 1-based, header excluded
    field: str
    message: str
    value: Any
    severity: str = ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "message": self.message,
            "value": self.value,
            "severity": self.severity,
        }


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[ValidationIssue]
    warnings: List[ValidationIssue]
    total_rows: int
    valid_rows: int
    summary: Dict[str, Any]

    @property
    def warning_rows(self) -> int:
        return len({issue.row for issue in self.warnings})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "summary": self.summary,
        }


def _is_empty(value: Any) -> bool:
    return not has_data(value)


def validate_field(
    value: Any,
    field_name: str,
    row_number: int,
    row: Mapping[str, Any],
    rules: ValidationRuleSet,
) -> List[ValidationIssue]:
    """Run the ordered per-cell checks for one target field."""
    issues: List[ValidationIssue] = []

    def _issue(message: str, severity: str = ERROR) -> None:
        issues.append(ValidationIssue(row_number, field_name, message, value, severity))

    if _is_empty(value):
        if field_name in rules.required:
            _issue(f"Field '{field_name}' is required")
        return issues

    text_value = str(value).strip()

    if field_name in rules.numeric and not is_valid_number(value):
        _issue(f"Field '{field_name}' must be a valid number")

    if field_name in rules.email and not is_valid_email(text_value):
        _issue(f"Field '{field_name}' must be a valid email address")

    if field_name in rules.phone and not is_valid_phone(text_value):
        _issue(f"Field '{field_name}' must be a valid phone number")

    if field_name in rules.date and not is_valid_date(value, field_name=field_name):
        _issue(f"Field '{field_name}' may not be a valid date (use YYYY-MM-DD)", WARNING)

    min_length = rules.min_length.get(field_name)
    if min_length and len(text_value) < min_length:
        _issue(f"Field '{field_name}' must be at least {min_length} characters")

    max_length = rules.max_length.get(field_name)
    if max_length and len(text_value) > max_length:
        _issue(f"Field '{field_name}' must be at most {max_length} characters")

    pattern = rules.pattern.get(field_name)
    if pattern is not None and not pattern.search(text_value):
        _issue(f"Field '{field_name}' has an invalid format")

    allowed = rules.allowed_values.get(field_name)
    if allowed and text_value not in [str(option) for option in allowed]:
        _issue(f"Field '{field_name}' must be one of: {', '.join(str(option) for option in allowed)}")

    custom = rules.custom_validators.get(field_name)
    if custom is not None:
        try:
            message = custom(value, row)
        except Exception as exc:
            logger.warning("Custom validator for '%s' raised on row %d: %s", field_name, row_number, exc)
            message = f"Custom validation failed: {exc}"
        if message:
            _issue(message)

    return issues


def validate_row(
    row: Mapping[str, Any],
    row_number: int,
    mapping: FieldMapping,
    rules: ValidationRuleSet,
) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    for source, target in mapping.mapped_items():
        # A missing cell is validated like an empty one.
        for issue in validate_field(row.get(source), target, row_number, row, rules):
            (errors if issue.severity == ERROR else warnings).append(issue)
    return errors, warnings


def find_duplicates(
    rows: Sequence[Mapping[str, Any]],
    mapping: FieldMapping,
    unique_fields: Iterable[str] = DEFAULT_UNIQUE_FIELDS,
) -> List[ValidationIssue]:
    """
    Flag values shared by two or more rows on the unique-candidate fields.

    Values are compared trimmed and lower-cased; every occurrence gets one
    error listing all the rows that share it. Each source column mapped to
    a unique field is checked on its own.
    """
    errors: List[ValidationIssue] = []
    for target in unique_fields:
        for source in mapping.sources_for(target):
            errors.extend(_column_duplicates(rows, source, target))
    return errors


def _column_duplicates(rows: Sequence[Mapping[str, Any]], source: str, target: str) -> List[ValidationIssue]:
    occurrences: Dict[str, List[Tuple[int, Any]]] = defaultdict(list)
    for index, row in enumerate(rows, start=1):
        value = row.get(source)
        if has_data(value):
            occurrences[str(value).strip().lower()].append((index, value))

    errors: List[ValidationIssue] = []
    for shared in occurrences.values():
        if len(shared) < 2:
            continue
        row_numbers = ", ".join(str(row_number) for row_number, _ in shared)
        for row_number, value in shared:
            errors.append(
                ValidationIssue(
                    row_number,
                    target,
                    f"Duplicate value found in rows: {row_numbers}",
                    value,
                )
            )
    return errors


def find_unmapped_with_data(rows: Sequence[Mapping[str, Any]], mapping: FieldMapping) -> List[ValidationIssue]:
    warnings: List[ValidationIssue] = []
    for index, row in enumerate(rows, start=1):
        for source in unmapped_fields_with_data(row, mapping):
            warnings.append(
                ValidationIssue(index, source, "Field not mapped but has data", row.get(source), WARNING)
            )
    return warnings


def _iter_row_issues(
    dataset: ParsedDataset, mapping: FieldMapping, rules: ValidationRuleSet
) -> Iterator[Tuple[List[ValidationIssue], List[ValidationIssue]]]:
    for index, row in enumerate(dataset.rows, start=1):
        yield validate_row(row, index, mapping, rules)


def _summarize(
    dataset: ParsedDataset,
    mapping: FieldMapping,
    rules: ValidationRuleSet,
    errors: List[ValidationIssue],
    warnings: List[ValidationIssue],
) -> ValidationResult:
    errors = errors + find_duplicates(dataset.rows, mapping, rules.unique_fields)
    warnings = warnings + find_unmapped_with_data(dataset.rows, mapping)

    errors_by_field: Dict[str, int] = defaultdict(int)
    for issue in errors:
        errors_by_field[issue.field] += 1
    warnings_by_field: Dict[str, int] = defaultdict(int)
    for issue in warnings:
        warnings_by_field[issue.field] += 1

    error_rows = {issue.row for issue in errors}
    result = ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        total_rows=dataset.total_rows,
        valid_rows=dataset.total_rows - len(error_rows),
        summary={
            "total_errors": len(errors),
            "total_warnings": len(warnings),
            "errors_by_field": dict(errors_by_field),
            "warnings_by_field": dict(warnings_by_field),
        },
    )
    logger.info(
        "Validated %d rows: %d errors, %d warnings, %d valid rows",
        result.total_rows,
        len(errors),
        len(warnings),
        result.valid_rows,
    )
    return result


def validate_dataset(dataset: ParsedDataset, mapping: FieldMapping, rules: ValidationRuleSet) -> ValidationResult:
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    for row_errors, row_warnings in _iter_row_issues(dataset, mapping, rules):
        errors.extend(row_errors)
        warnings.extend(row_warnings)
    return _summarize(dataset, mapping, rules, errors, warnings)


async def validate_dataset_async(
    dataset: ParsedDataset,
    mapping: FieldMapping,
    rules: ValidationRuleSet,
    *,
    yield_every: Optional[int] = None,
) -> ValidationResult:
    """Same result as validate_dataset, yielding to the event loop every ``yield_every`` rows."""
    yield_every = yield_every or settings.validation_yield_every
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    for index, (row_errors, row_warnings) in enumerate(_iter_row_issues(dataset, mapping, rules), start=1):
        errors.extend(row_errors)
        warnings.extend(row_warnings)
        if index % yield_every == 0:
            await asyncio.sleep(0)
    return _summarize(dataset, mapping, rules, errors, warnings)
