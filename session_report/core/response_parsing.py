"""Helpers for decoding schema-constrained model responses."""

from __future__ import annotations

import json
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from session_report.exceptions import ResponseValidationError

M = TypeVar("M", bound=BaseModel)


def clean_json_text(text: str) -> str:
    """Strip markdown code fences and leading/trailing whitespace."""
    text = (text or "").strip()
    # Remove ```json ... ``` wrapper
    text = re.sub(r"^```(?:json)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    return text.strip()


def violations_from(exc: ValidationError) -> list[tuple[str, str]]:
    """One ``(field_path, reason)`` pair per validation error."""
    violations = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err["loc"]) or "<root>"
        violations.append((path, err["msg"]))
    return violations


def parse_model(text: str, model_cls: type[M]) -> M:
    """Decode ``text`` as JSON and validate it against ``model_cls``.

    Raises:
        ResponseValidationError: with every violation found.
    """
    cleaned = clean_json_text(text)
    if not cleaned:
        raise ResponseValidationError(
            f"Empty {model_cls.__name__} response", [("<root>", "empty response")]
        )
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ResponseValidationError(
            f"Malformed {model_cls.__name__} JSON",
            [("<root>", f"invalid JSON at line {exc.lineno} column {exc.colno}: {exc.msg}")],
        ) from exc
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        raise ResponseValidationError(
            f"Invalid {model_cls.__name__} structure", violations_from(exc)
        ) from exc
