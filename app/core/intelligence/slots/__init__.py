"""Entity extraction module."""

from .types import AllInOne, ContactInfo, Daypart, Lang, TimeConstraint
from .extractor import (
    extract_datetime_token,
    extract_date_only_token,
    extract_time_only_token,
    extract_requested_datetime,
    extract_time_constraint,
    wants_specific_time,
    looks_like_option_choice,
    parse_slot_choice,
    parse_email,
    find_email,
    parse_phone,
    parse_full_name,
    parse_name_email_only,
    parse_all_in_one,
)

__all__ = [
    # Types
    "AllInOne",
    "ContactInfo",
    "Daypart",
    "Lang",
    "TimeConstraint",
    # Extractors
    "extract_datetime_token",
    "extract_date_only_token",
    "extract_time_only_token",
    "extract_requested_datetime",
    "extract_time_constraint",
    "wants_specific_time",
    "looks_like_option_choice",
    "parse_slot_choice",
    "parse_email",
    "find_email",
    "parse_phone",
    "parse_full_name",
    "parse_name_email_only",
    "parse_all_in_one",
]
