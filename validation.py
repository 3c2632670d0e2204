"""
Field validation for catalog payloads and identifier (name / slug) checks.

Each entity kind declares a table of FieldRule entries. validate_fields walks
the table in order and raises a 400 for the first rule that fails, checking
required -> length -> format -> numeric range for every field.
"""

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Pattern, Sequence, Tuple, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo.database import Database

if TYPE_CHECKING:
    from catalog import EntityKind

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
SLUG_MAX_LENGTH = 200
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 150

NAME_STYLE = "name"
SLUG_STYLE = "slug"


@dataclass(frozen=True)
class FieldRule:
    field: str
    label: str
    kind: str = "text"  # text | number | choice | flag | object_id | url_list | label_list | pairs
    required: bool = True
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[Pattern] = None
    pattern_message: Optional[str] = None
    minimum: Optional[float] = None
    choices: Tuple[str, ...] = ()
    default: Any = None
    pair_keys: Tuple[str, str] = ("label", "value")


def _fail(message: str):
    raise HTTPException(status_code=400, detail=message)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_text(rule: FieldRule, value: Any) -> Optional[str]:
    if _is_blank(value):
        if rule.required:
            _fail(f"{rule.label} is required.")
        return None
    if not isinstance(value, str):
        _fail(f"{rule.label} must be text.")
    text = value.strip()
    if rule.min_length is not None and len(text) < rule.min_length:
        _fail(f"{rule.label} must be at least {rule.min_length} characters.")
    if rule.max_length is not None and len(text) > rule.max_length:
        _fail(f"{rule.label} cannot exceed {rule.max_length} characters.")
    if rule.pattern is not None and not rule.pattern.match(text):
        _fail(rule.pattern_message or f"{rule.label} has an invalid format.")
    return text


def _check_number(rule: FieldRule, value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        if rule.required:
            _fail(f"{rule.label} is required.")
        return None
    if isinstance(value, bool):
        _fail(f"{rule.label} must be a positive number.")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        _fail(f"{rule.label} must be a positive number.")
    if math.isnan(number) or math.isinf(number):
        _fail(f"{rule.label} must be a positive number.")
    if rule.minimum is not None and number < rule.minimum:
        _fail(f"{rule.label} must be a positive number.")
    return number


def _check_choice(rule: FieldRule, value: Any) -> Optional[str]:
    if _is_blank(value):
        if rule.required and rule.default is None:
            _fail(f"{rule.label} is required.")
        return rule.default
    if value not in rule.choices:
        _fail(f"{rule.label} must be one of: {', '.join(rule.choices)}.")
    return value


def _check_flag(rule: FieldRule, value: Any) -> bool:
    if value is None:
        return bool(rule.default)
    if not isinstance(value, bool):
        _fail(f"{rule.label} must be true or false.")
    return value


def _check_object_id(rule: FieldRule, value: Any) -> Optional[ObjectId]:
    if _is_blank(value):
        if rule.required:
            _fail(f"{rule.label} is required.")
        return None
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        _fail(f"Invalid {rule.label.lower()} ID.")
    return ObjectId(value)


def _check_url_list(rule: FieldRule, value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        _fail(f"{rule.label} must be an array.")
    if any(_is_blank(v) or not isinstance(v, str) for v in value):
        _fail(f"{rule.label} must be an array of image URLs.")
    return [v.strip() for v in value]


def _check_label_list(rule: FieldRule, value: Any) -> List[str]:
    if not isinstance(value, list) or not value:
        _fail(f"At least one {rule.label.lower()} is required.")
    labels = [v.strip() if isinstance(v, str) else "" for v in value]
    if any(not label for label in labels):
        _fail(f"All {rule.label.lower()}s must be non-empty.")
    return labels


def _check_pairs(rule: FieldRule, value: Any) -> List[Dict[str, str]]:
    if value is None or value == []:
        if rule.required:
            _fail(f"At least one {rule.label.lower()} is required.")
        return []
    if not isinstance(value, list):
        if rule.required:
            _fail(f"At least one {rule.label.lower()} is required.")
        _fail(f"{rule.label}s must be an array.")
    first, second = rule.pair_keys
    pairs = []
    for entry in value:
        if not isinstance(entry, dict):
            _fail(f"Each {rule.label.lower()} needs a {first} and a {second}.")
        a, b = entry.get(first), entry.get(second)
        if _is_blank(a) or _is_blank(b) or not isinstance(a, str) or not isinstance(b, str):
            _fail(f"Each {rule.label.lower()} needs a {first} and a {second}.")
        pairs.append({first: a.strip(), second: b.strip()})
    return pairs


_CHECKS = {
    "text": _check_text,
    "number": _check_number,
    "choice": _check_choice,
    "flag": _check_flag,
    "object_id": _check_object_id,
    "url_list": _check_url_list,
    "label_list": _check_label_list,
    "pairs": _check_pairs,
}


def validate_fields(rules: Sequence[FieldRule], payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        _fail("Request body must be a JSON object.")
    cleaned: Dict[str, Any] = {}
    for rule in rules:
        cleaned[rule.field] = _CHECKS[rule.kind](rule, payload.get(rule.field))
    return cleaned


# Identifier checks

class IdentifierCheck(BaseModel):
    isValid: bool
    isUnique: bool
    message: str
    entity: Optional[str] = None
    conflictingName: Optional[str] = None


def identifier_format_error(value: str, style: str) -> Optional[str]:
    text = value.strip()
    if style == NAME_STYLE:
        if len(text) < NAME_MIN_LENGTH:
            return f"Must be at least {NAME_MIN_LENGTH} characters"
        if len(text) > NAME_MAX_LENGTH:
            return f"Cannot exceed {NAME_MAX_LENGTH} characters"
        return None
    if not SLUG_PATTERN.match(text):
        return "Must be lowercase, alphanumeric with hyphens only"
    if len(text) > SLUG_MAX_LENGTH:
        return f"Slug cannot exceed {SLUG_MAX_LENGTH} characters"
    return None


def identifier_query(kind: "EntityKind", value: str, exclude_id: Union[ObjectId, str, None] = None) -> Dict[str, Any]:
    text = value.strip()
    query: Dict[str, Any]
    if kind.identifier_style == NAME_STYLE:
        query = {kind.identifier: {"$regex": f"^{re.escape(text)}$", "$options": "i"}}
    else:
        query = {kind.identifier: text.lower()}
    # a malformed exclude id widens the check to every document
    if isinstance(exclude_id, ObjectId):
        query["_id"] = {"$ne": exclude_id}
    elif isinstance(exclude_id, str) and ObjectId.is_valid(exclude_id):
        query["_id"] = {"$ne": ObjectId(exclude_id)}
    return query


def find_conflict(
    db: Database, kind: "EntityKind", value: str, exclude_id: Union[ObjectId, str, None] = None
) -> Optional[Dict[str, Any]]:
    return db[kind.collection].find_one(identifier_query(kind, value, exclude_id))


def check_identifier(
    db: Database, kind: "EntityKind", value: Optional[str], exclude_id: Union[ObjectId, str, None] = None
) -> IdentifierCheck:
    if not isinstance(value, str) or not value.strip():
        return IdentifierCheck(isValid=False, isUnique=False, message="Slug cannot be empty", entity=kind.name)

    error = identifier_format_error(value, kind.identifier_style)
    if error:
        return IdentifierCheck(isValid=False, isUnique=False, message=error, entity=kind.name)

    existing = find_conflict(db, kind, value, exclude_id)
    if existing:
        return IdentifierCheck(
            isValid=True,
            isUnique=False,
            message=f"This {kind.label.lower()} name/slug is already in use",
            entity=kind.name,
            conflictingName=existing.get(kind.display_field),
        )
    return IdentifierCheck(isValid=True, isUnique=True, message="Slug is valid and available", entity=kind.name)
