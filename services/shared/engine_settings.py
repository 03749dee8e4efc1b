from __future__ import annotations

"""
Shared helpers for configuring the expense engine from the environment.

The HTTP service, the integration tests, and any batch tooling build the
engine from the same set of environment variables. Loading and validating them
in one place keeps the reporting currency, the reporting timezone, and the
dialogue policy consistent across every entrypoint.
"""

import os
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

OPTIONAL_PROMPT_SLOTS = frozenset({"payment_method", "occurred_at"})
SUPPORTED_QUERY_RANGES = frozenset(
    {"today", "yesterday", "this_week", "last_week", "this_month", "last_month", "this_year"}
)


class EngineSettingsError(RuntimeError):
    """Raised when engine configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class EngineSettings:
    reporting_currency: str = "MXN"
    reporting_timezone: str = "UTC"
    max_clarification_turns: int = 3
    prompt_optional_slots: tuple[str, ...] = ()
    default_query_range: str = "this_month"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.reporting_timezone)


def load_engine_settings(
    *,
    currency_env: str = "EXPENSE_REPORTING_CURRENCY",
    timezone_env: str = "EXPENSE_REPORTING_TIMEZONE",
    max_turns_env: str = "EXPENSE_MAX_CLARIFICATION_TURNS",
    optional_slots_env: str = "EXPENSE_PROMPT_OPTIONAL_SLOTS",
    query_range_env: str = "EXPENSE_DEFAULT_QUERY_RANGE",
    default_currency: str = "MXN",
    default_timezone: str = "UTC",
    default_max_turns: int = 3,
    default_query_range: str = "this_month",
) -> EngineSettings:
    """
    Construct EngineSettings from environment variables.

    Args:
        currency_env: Env var holding the ISO 4217 reporting currency.
        timezone_env: Env var holding the IANA zone that defines "today".
        max_turns_env: Env var capping clarification turns per capture.
        optional_slots_env: Comma-separated optional slots the dialogue should ask for.
        query_range_env: Env var naming the range used for questions without one.
        default_*: Fallback values when the env var is unset/empty.
    """

    reporting_currency = _parse_currency(os.getenv(currency_env), default_currency, currency_env)
    reporting_timezone = _parse_timezone(os.getenv(timezone_env), default_timezone, timezone_env)
    max_turns = _parse_int(os.getenv(max_turns_env), default_max_turns, max_turns_env)
    if max_turns < 1:
        raise EngineSettingsError(f"{max_turns_env} must be at least 1 (received {max_turns})")

    optional_slots = _parse_slot_list(os.getenv(optional_slots_env), optional_slots_env)
    query_range = _parse_query_range(os.getenv(query_range_env), default_query_range, query_range_env)

    return EngineSettings(
        reporting_currency=reporting_currency,
        reporting_timezone=reporting_timezone,
        max_clarification_turns=max_turns,
        prompt_optional_slots=optional_slots,
        default_query_range=query_range,
    )


def _parse_currency(raw_value: Optional[str], default: str, env_key: str) -> str:
    candidate = (raw_value or "").strip().upper() or default.upper()
    if len(candidate) != 3 or not candidate.isalpha():
        raise EngineSettingsError(f"{env_key} must be a 3-letter ISO currency code (received '{candidate}')")
    return candidate


def _parse_timezone(raw_value: Optional[str], default: str, env_key: str) -> str:
    candidate = (raw_value or "").strip() or default
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise EngineSettingsError(f"{env_key} is not a known timezone (received '{candidate}')") from exc
    return candidate


def _parse_int(raw_value: Optional[str], default: int, env_key: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise EngineSettingsError(f"{env_key} must be an integer (received '{raw_value}')") from exc


def _parse_slot_list(raw_value: Optional[str], env_key: str) -> tuple[str, ...]:
    if raw_value is None or raw_value.strip() == "":
        return ()

    slots: list[str] = []
    for item in raw_value.split(","):
        slot = item.strip().lower()
        if not slot:
            continue
        if slot not in OPTIONAL_PROMPT_SLOTS:
            raise EngineSettingsError(f"{env_key} contains unsupported slot '{slot}'")
        if slot not in slots:
            slots.append(slot)
    return tuple(slots)


def _parse_query_range(raw_value: Optional[str], default: str, env_key: str) -> str:
    candidate = (raw_value or "").strip().lower() or default
    if candidate not in SUPPORTED_QUERY_RANGES:
        raise EngineSettingsError(f"Unsupported query range '{candidate}' in {env_key}")
    return candidate
