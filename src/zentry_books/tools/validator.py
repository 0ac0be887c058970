"""Validation of untrusted action payloads against the action catalog.

The validator is the only place that turns loosely-typed model output into
typed action variants. It is pure: it never reads or writes the books.
Every violation in a payload is collected so the user can fix them all at
once.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

import structlog

from zentry_books.errors import ActionValidationError, FieldViolation
from zentry_books.models import (
    ALLOWED_TAX_RATES,
    Direction,
    InvoiceStatus,
    TaskPriority,
    TaskStatus,
)
from zentry_books.tools.definitions import (
    ActionCatalog,
    ActionKind,
    CatalogEntry,
    FieldSpec,
    FieldType,
    ProposedAction,
    build_catalog,
)

logger = structlog.get_logger(__name__)

_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_DIGITS_RE = re.compile(r"[0-9]+")
_DECIMAL_RE = re.compile(r"[0-9]+(\.[0-9]+)?")
_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")

# Enum type for each CHOICE field, keyed by variant attribute
_CHOICE_TYPES: dict[str, type[Enum]] = {
    "direction": Direction,
    "status": InvoiceStatus,
    "priority": TaskPriority,
}
_TASK_KINDS = {ActionKind.CREATE_TASK, ActionKind.UPDATE_TASK, ActionKind.SEARCH_TASK}


class _Invalid(Exception):
    """Internal signal carrying a single field's failure message."""


def _coerce_text(value: Any) -> str:
    if not isinstance(value, str):
        raise _Invalid("must be a string")
    stripped = value.strip()
    if not stripped:
        raise _Invalid("must not be empty")
    return stripped


def _coerce_positive_int(value: Any) -> int:
    # bool is an int subclass; true/false are never amounts
    if isinstance(value, bool):
        raise _Invalid("must be a positive integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and _DIGITS_RE.fullmatch(value.strip()):
        number = int(value.strip())
    else:
        raise _Invalid("must be a positive integer")
    if number <= 0:
        raise _Invalid("must be a positive integer")
    return number


def _coerce_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_RE.fullmatch(value.strip()):
        raise _Invalid("must be a date in YYYY-MM-DD format")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise _Invalid("is not a valid calendar date") from None


def _coerce_tax_rate(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise _Invalid("must be one of 0, 0.08, 0.1")
    try:
        if isinstance(value, Decimal):
            rate = value
        elif isinstance(value, int | float):
            rate = Decimal(str(value))
        elif isinstance(value, str) and _DECIMAL_RE.fullmatch(value.strip()):
            rate = Decimal(value.strip())
        else:
            raise _Invalid("must be one of 0, 0.08, 0.1")
    except InvalidOperation:
        raise _Invalid("must be one of 0, 0.08, 0.1") from None

    for allowed in ALLOWED_TAX_RATES:
        if rate == allowed:
            return allowed
    raise _Invalid(f"{value!r} is not an allowed rate (0, 0.08, 0.1)")


def _coerce_email(value: Any) -> str | None:
    if not isinstance(value, str):
        raise _Invalid("must be a string")
    stripped = value.strip()
    if not stripped:
        return None
    if not _EMAIL_RE.fullmatch(stripped):
        raise _Invalid("must be a valid email address")
    return stripped


def _coerce_text_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise _Invalid("must be a list of strings")
    items = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise _Invalid("must contain only non-empty strings")
        items.append(item.strip())
    return tuple(items)


def _coerce_object(value: Any) -> tuple[tuple[str, Any], ...]:
    if not isinstance(value, dict) or not all(isinstance(k, str) for k in value):
        raise _Invalid("must be an object")
    return tuple(value.items())


class ActionValidator:
    """Validates raw action payloads and builds typed ``ProposedAction``s."""

    def __init__(self, catalog: ActionCatalog | None = None):
        self.catalog = catalog or build_catalog(include_workspace=True)

    def validate(
        self, kind: str, arguments: Any, action_id: str | None = None
    ) -> ProposedAction:
        """Validate one candidate action.

        Args:
            kind: Action kind name as reported by the model.
            arguments: Decoded argument payload; anything non-dict fails.
            action_id: Id to carry over (e.g. the model's tool call id).

        Returns:
            A ProposedAction holding the typed arguments variant.

        Raises:
            ActionValidationError: With every violation found.
        """
        entry = self.catalog.get(kind)
        if entry is None:
            raise ActionValidationError(
                str(kind), [FieldViolation("kind", f"unknown action '{kind}'")]
            )

        if not isinstance(arguments, dict):
            raise ActionValidationError(
                entry.kind.value, [FieldViolation("arguments", "must be an object")]
            )

        values, provided, violations = self._check_fields(entry, arguments)
        if entry.requires_change and not provided and not violations:
            violations.append(
                FieldViolation("arguments", "at least one field to change is required")
            )
        if violations:
            logger.debug(
                "action_validation_failed",
                kind=entry.kind.value,
                violations=[str(v) for v in violations],
            )
            raise ActionValidationError(entry.kind.value, violations)

        if entry.requires_change:
            values["provided"] = frozenset(provided)

        variant = entry.arguments_type(**values)
        if action_id:
            return ProposedAction(kind=entry.kind, arguments=variant, id=action_id)
        return ProposedAction(kind=entry.kind, arguments=variant)

    def revalidate(self, action: ProposedAction) -> ProposedAction:
        """Run an already-typed action through validation again.

        Used right before execution so nothing that bypassed or outlived the
        first check reaches the books.
        """
        entry = self.catalog.get(action.kind)
        if entry is None:
            raise ActionValidationError(
                str(action.kind), [FieldViolation("kind", f"unknown action '{action.kind}'")]
            )
        if not isinstance(action.arguments, entry.arguments_type):
            raise ActionValidationError(
                entry.kind.value,
                [FieldViolation("arguments", "do not match the action kind")],
            )
        return self.validate(entry.kind.value, entry.to_payload(action.arguments), action.id)

    def _check_fields(
        self, entry: CatalogEntry, arguments: dict[str, Any]
    ) -> tuple[dict[str, Any], set[str], list[FieldViolation]]:
        values: dict[str, Any] = {}
        provided: set[str] = set()
        violations: list[FieldViolation] = []

        known = {spec.name for spec in entry.fields}
        for name in arguments:
            if name not in known:
                violations.append(FieldViolation(str(name), "unknown field"))

        for spec in entry.fields:
            present = spec.name in arguments
            raw = arguments.get(spec.name)

            if raw is None:
                if present and spec.nullable:
                    values[spec.attr] = None
                    provided.add(spec.attr)
                elif spec.required:
                    violations.append(FieldViolation(spec.name, "is required"))
                continue

            if not spec.required and isinstance(raw, str) and not raw.strip():
                continue

            try:
                value = self._coerce(entry, spec, raw)
            except _Invalid as e:
                violations.append(FieldViolation(spec.name, str(e)))
                continue

            if value is None:
                # Empty optional value, e.g. email ""
                continue
            values[spec.attr] = value
            if not spec.required:
                provided.add(spec.attr)

        return values, provided, violations

    def _coerce(self, entry: CatalogEntry, spec: FieldSpec, raw: Any) -> Any:
        if spec.type == FieldType.TEXT:
            return _coerce_text(raw)
        if spec.type == FieldType.POSITIVE_INT:
            return _coerce_positive_int(raw)
        if spec.type == FieldType.DATE:
            return _coerce_date(raw)
        if spec.type == FieldType.TAX_RATE:
            return _coerce_tax_rate(raw)
        if spec.type == FieldType.EMAIL:
            return _coerce_email(raw)
        if spec.type == FieldType.TEXT_LIST:
            return _coerce_text_list(raw)
        if spec.type == FieldType.OBJECT:
            return _coerce_object(raw)
        if spec.type == FieldType.CHOICE:
            if isinstance(raw, Enum):
                raw = raw.value
            if not isinstance(raw, str) or raw not in spec.choices:
                raise _Invalid(f"must be one of {', '.join(spec.choices)}")
            return self._choice_type(entry, spec)(raw)
        raise _Invalid("has an unsupported type")

    @staticmethod
    def _choice_type(entry: CatalogEntry, spec: FieldSpec) -> type[Enum]:
        if spec.attr == "status" and entry.kind in _TASK_KINDS:
            return TaskStatus
        return _CHOICE_TYPES[spec.attr]
