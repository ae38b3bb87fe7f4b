"""
Import profiles.

A profile describes one importable table: its spreadsheet columns, how each
column is normalized, which columns identify an existing record, how new
identifiers are assigned, and who is welcomed when a record is created.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from src.exceptions import MissingRequiredField, ValidationError
from src.import_.models import ImportRow, MatchReason
from src.import_.normalization import (
    find_field,
    find_field_value,
    normalize_date,
    normalize_gender,
    normalize_phone,
    normalize_timestamp,
)

USERS_TABLE = "userss"
ACCOUNT_REQUESTS_TABLE = "request_acc"
POPULATION_TABLE = "population_records"
HEALTH_HISTORY_TABLE = "health_history"

ADMIN_ROLE = "admin"
PATIENT_ROLE = "patient"
HEALTH_WORKER_ROLES = ("doctor", "nurse", "midwife", "bhw")


class FieldKind(str, Enum):
    """How a column is normalized."""

    TEXT = "text"
    DATE = "date"
    PHONE = "phone"
    GENDER = "gender"
    ROLE = "role"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class FieldSpec:
    """One importable column."""

    name: str  # Store column
    label: str  # Spreadsheet header
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    blank_to_none: bool = False
    aliases: tuple[str, ...] = ()

    @property
    def candidates(self) -> tuple[str, ...]:
        return (self.name, self.label, *self.aliases)


@dataclass(frozen=True)
class NaturalKey:
    """Ordinary fields that together recognize the same subject."""

    fields: tuple[str, ...]
    reason: MatchReason


@dataclass(frozen=True)
class ImportOptions:
    """Validation strictness and reporting options for a batch."""

    strict_phone: bool = False
    strict_gender: bool = False
    error_preview_limit: int = 3


def _no_defaults(now: datetime) -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class ImportProfile:
    """Description of one importable table."""

    name: str
    table: str
    fields: tuple[FieldSpec, ...]
    external_id_field: str | None = None
    external_id_column: str = "id"
    natural_keys: tuple[NaturalKey, ...] = ()
    timestamp_field: str | None = None
    assigns_identifiers: bool = True
    id_field: str = "id"
    insert_defaults: Callable[[datetime], dict[str, Any]] = _no_defaults
    welcome_on_create: Callable[[Mapping[str, Any]], bool] | None = None
    sheet_name: str = "Sheet1"

    def normalize(
        self,
        raw: Mapping[str, Any],
        row_number: int,
        options: ImportOptions,
        now: datetime,
    ) -> ImportRow:
        """
        Normalize a raw spreadsheet row into canonical fields.

        Raises:
            ImportRowError: On a missing required field or an invalid value
        """
        fields: dict[str, Any] = {}
        blank_names: list[str] = []
        timestamp: datetime | None = None

        for spec in self.fields:
            if spec.kind == FieldKind.TIMESTAMP:
                cell = find_field_value(raw, *spec.candidates)
                if cell:
                    timestamp = normalize_timestamp(
                        find_field(raw, *spec.candidates), now
                    )
                    fields[spec.name] = timestamp.isoformat()
                elif spec.required:
                    raise MissingRequiredField(spec.label)
                continue

            fields[spec.name] = _normalize_field(spec, raw, options)
            if not find_field_value(raw, *spec.candidates):
                blank_names.append(spec.name)

        external_id = ""
        if self.external_id_field:
            if self.external_id_field == self.id_field:
                external_id = str(fields.pop(self.id_field, "") or "")
            else:
                external_id = str(fields.get(self.external_id_field) or "")

        return ImportRow(
            row_number=row_number,
            raw=dict(raw),
            fields=fields,
            blank_names=tuple(blank_names),
            external_id=external_id,
            timestamp=timestamp,
        )

    def should_welcome(self, fields: Mapping[str, Any]) -> bool:
        return self.welcome_on_create is not None and self.welcome_on_create(fields)


def _normalize_field(
    spec: FieldSpec, raw: Mapping[str, Any], options: ImportOptions
) -> Any:
    cell = find_field(raw, *spec.candidates)
    text = find_field_value(raw, *spec.candidates)

    if not text:
        if spec.required:
            raise MissingRequiredField(spec.label)
        if spec.kind == FieldKind.DATE or spec.blank_to_none:
            return None
        return ""

    if spec.kind == FieldKind.DATE:
        return normalize_date(cell)
    if spec.kind == FieldKind.PHONE:
        return normalize_phone(cell, strict=options.strict_phone)
    if spec.kind == FieldKind.GENDER:
        return normalize_gender(text, strict=options.strict_gender)
    if spec.kind == FieldKind.ROLE:
        return text.lower()
    return text


# Users


def _user_insert_defaults(now: datetime) -> dict[str, Any]:
    return {
        "role": PATIENT_ROLE,
        "status": "active",
        "created_at": now.isoformat(),
        "isUserOnline": "no",
    }


def _is_non_admin(fields: Mapping[str, Any]) -> bool:
    return str(fields.get("role") or "").lower() != ADMIN_ROLE


_PERSON_NATURAL_KEYS = (
    NaturalKey(("phone",), MatchReason.PHONE_NUMBER),
    NaturalKey(
        ("first_name", "last_name", "date_of_birth"),
        MatchReason.NAME_AND_BIRTH_DATE,
    ),
)

USERS_PROFILE = ImportProfile(
    name="users",
    table=USERS_TABLE,
    fields=(
        FieldSpec("id", "ID", aliases=("User ID",)),
        FieldSpec("first_name", "First Name", required=True),
        FieldSpec("middle_name", "Middle Name", blank_to_none=True),
        FieldSpec("last_name", "Last Name", required=True),
        FieldSpec("date_of_birth", "Date of Birth", FieldKind.DATE, required=True),
        FieldSpec("gender", "Gender", FieldKind.GENDER),
        FieldSpec("role", "Role", FieldKind.ROLE),
        FieldSpec(
            "phone", "Phone Number", FieldKind.PHONE, required=True, aliases=("Phone",)
        ),
    ),
    external_id_field="id",
    natural_keys=_PERSON_NATURAL_KEYS,
    insert_defaults=_user_insert_defaults,
    welcome_on_create=_is_non_admin,
    sheet_name="Users",
)


# Population (demographic) records


def _created_now(now: datetime) -> dict[str, Any]:
    return {"created_at": now.isoformat()}


POPULATION_PROFILE = ImportProfile(
    name="population",
    table=POPULATION_TABLE,
    fields=(
        FieldSpec("id", "Record ID"),
        FieldSpec("household_no", "Household No", aliases=("Household Number",)),
        FieldSpec("first_name", "First Name", required=True),
        FieldSpec("middle_name", "Middle Name", blank_to_none=True),
        FieldSpec("last_name", "Last Name", required=True),
        FieldSpec("date_of_birth", "Date of Birth", FieldKind.DATE, required=True),
        FieldSpec("gender", "Gender", FieldKind.GENDER),
        FieldSpec("phone", "Phone Number", FieldKind.PHONE, aliases=("Phone",)),
        FieldSpec("address", "Address", aliases=("Purok",)),
        FieldSpec("civil_status", "Civil Status"),
    ),
    external_id_field="id",
    natural_keys=_PERSON_NATURAL_KEYS,
    insert_defaults=_created_now,
    sheet_name="Population Records",
)


# Health history

HEALTH_HISTORY_TEXT_FIELDS: tuple[tuple[str, str], ...] = (
    ("allergy", "Allergy"),
    ("immunizations", "Immunizations"),
    ("surgical_history", "Surgical History"),
    ("neurologic", "Neurologic"),
    ("family_history", "Family History"),
    ("family_history_other", "Family History Other"),
    ("past_history", "Past History"),
    ("past_history_other", "Past History Other"),
    ("lab_requests", "Lab Requests"),
    ("menstrual_history", "Menstrual History"),
    ("pregnancy_history", "Pregnancy History"),
    ("general_survey", "General Survey"),
    ("skin_condition", "Skin Condition"),
    ("heent_condition", "HEENT Condition"),
    ("chest_condition", "Chest Condition"),
    ("heart_condition", "Heart Condition"),
    ("abdomen_condition", "Abdomen Condition"),
    ("extremities_condition", "Extremities Condition"),
    ("smoking_history", "Smoking History"),
    ("drinking_history", "Drinking History"),
    ("exercise_history", "Exercise History"),
    ("social_history_other", "Social History Other"),
    ("gravida", "Gravida"),
    ("para", "Para"),
    ("pe_findings", "PE Findings"),
    ("term", "Term"),
    ("premature", "Premature"),
    ("abortion", "Abortion"),
    ("live_birth", "Live Birth"),
)

HEALTH_HISTORY_PROFILE = ImportProfile(
    name="health_history",
    table=HEALTH_HISTORY_TABLE,
    fields=(
        FieldSpec("user_id", "User ID", required=True),
        FieldSpec("created_at", "Created At", FieldKind.TIMESTAMP),
        *(FieldSpec(name, label) for name, label in HEALTH_HISTORY_TEXT_FIELDS),
    ),
    external_id_field="user_id",
    external_id_column="user_id",
    timestamp_field="created_at",
    assigns_identifiers=False,
    insert_defaults=_created_now,
    sheet_name="Health History Records",
)


PROFILES: dict[str, ImportProfile] = {
    profile.name: profile
    for profile in (USERS_PROFILE, POPULATION_PROFILE, HEALTH_HISTORY_PROFILE)
}


def get_profile(name: str) -> ImportProfile:
    """Look up a profile by name."""
    try:
        return PROFILES[name]
    except KeyError:
        raise ValidationError(
            f"Unknown import type '{name}'. Expected one of: {', '.join(PROFILES)}"
        ) from None
