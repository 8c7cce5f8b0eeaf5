from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .time_utils import parse_iso_datetime


# Largest money amount accepted on input (IQD has no practical minor unit)
MAX_AMOUNT = Decimal("9999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class Field:
    """
    One accepted request field.

    kind: "int" | "decimal" | "str" | "datetime" | "bool"
    choices: optional allowlist for str fields (upper-cased before matching)
    """
    kind: str
    required: bool = False
    choices: tuple[str, ...] | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer:
    - fields: what clients are allowed to send (security boundary)
    - allow_unknown: unknown keys are rejected unless this is set
    """
    fields: dict[str, Field] = field(default_factory=dict)
    allow_unknown: bool = False


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{key} must be a number")
        if not amount.is_finite():
            raise ValidationError(f"{key} must be a finite number")
        if abs(amount) > MAX_AMOUNT:
            raise ValidationError(f"{key} exceeds maximum amount {MAX_AMOUNT}")
        return amount
    raise ValidationError(f"{key} must be a number")


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{key} must be an ISO-8601 datetime")


def _coerce_value(key: str, spec: Field, value: Any):
    if spec.kind == "int":
        return _coerce_int(key, value)
    if spec.kind == "decimal":
        return _coerce_decimal(key, value)
    if spec.kind == "datetime":
        return _coerce_datetime(key, value)
    if spec.kind == "bool":
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{key} must be a boolean")

    # Strings
    text = str(value).strip()
    if spec.choices is not None:
        text = text.upper()
        if text not in spec.choices:
            raise ValidationError(f"{key} must be one of: {', '.join(spec.choices)}")
    if spec.max_length and len(text) > spec.max_length:
        raise ValidationError(f"{key} exceeds max length {spec.max_length}")
    return text


def validate_payload(payload: Any, policy: PayloadPolicy) -> dict:
    """
    Validates + normalizes an incoming JSON object against a PayloadPolicy.
    Returns a cleaned dict containing only known fields; absent optional
    fields are omitted, explicit nulls are kept as None.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = [k for k, spec in policy.fields.items() if spec.required and payload.get(k) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(sorted(missing))}")

    if not policy.allow_unknown:
        for k in payload.keys():
            if k not in policy.fields:
                raise ValidationError(f"Field not allowed: {k}")

    cleaned: dict = {}
    for k, spec in policy.fields.items():
        if k not in payload:
            continue
        raw = payload[k]
        cleaned[k] = None if raw is None else _coerce_value(k, spec, raw)
    return cleaned


def validate_query_args(args, policy: PayloadPolicy) -> dict:
    """Same as validate_payload, for request.args (ignores unknown keys)."""
    present = {k: args.get(k) for k in policy.fields if args.get(k) not in (None, "")}
    relaxed = PayloadPolicy(fields=policy.fields, allow_unknown=True)
    return validate_payload(present, relaxed)


def enforce_rules_cash_collection(patch: dict) -> None:
    if patch["amount"] < 0:
        raise ValidationError("amount must be >= 0")


def enforce_rules_period(start: datetime | None, end: datetime | None) -> None:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end")
