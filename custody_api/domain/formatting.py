# SPDX-License-Identifier: Apache-2.0

"""
Human-readable formatting of agreement change values and diffs.
"""

from typing import Optional

from ..models.enums import AgreementChangeType, ProposalStatus
from ..models.values import StringValue, NumberValue, BooleanValue, MapValue, ListValue


CHANGE_TYPE_LABELS = {
    AgreementChangeType.TERMS: "Terms and conditions",
    AgreementChangeType.MONITORING_RULES: "Monitoring rules",
    AgreementChangeType.SCREEN_TIME: "Screen time limits",
    AgreementChangeType.BEDTIME_SCHEDULE: "Bedtime schedule",
    AgreementChangeType.APP_RESTRICTIONS: "App restrictions",
    AgreementChangeType.CONTENT_FILTERS: "Content filters",
    AgreementChangeType.CONSEQUENCES: "Consequences",
    AgreementChangeType.REWARDS: "Rewards",
}

STATUS_LABELS = {
    ProposalStatus.PENDING: "Waiting for approval",
    ProposalStatus.APPROVED: "Approved by both parents",
    ProposalStatus.DECLINED: "Declined by co-parent",
    ProposalStatus.EXPIRED: "Expired (no response)",
    ProposalStatus.MODIFIED: "Modified by co-parent",
    ProposalStatus.AWAITING_SIGNATURES: "Awaiting signatures",
    ProposalStatus.ACTIVE: "Active (all signed)",
    ProposalStatus.SUPERSEDED: "Superseded by newer proposal",
    ProposalStatus.SIGNATURE_EXPIRED: "Expired before everyone signed",
}

MAX_STRING_DISPLAY = 100
MAX_LIST_DISPLAY = 3


def change_type_label(change_type: str) -> str:
    """Label for an agreement section."""
    return CHANGE_TYPE_LABELS[AgreementChangeType(change_type)]


def status_label(status: str) -> str:
    """Label for a proposal status."""
    return STATUS_LABELS[ProposalStatus(status)]


def _format_minutes(minutes: int) -> str:
    if minutes < 60:
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    hours, rest = divmod(minutes, 60)
    if rest == 0:
        return "1 hour" if hours == 1 else f"{hours} hours"
    return f"{hours}h {rest}m"


def _format_clock(minutes_from_midnight: int) -> str:
    hour, minute = divmod(minutes_from_midnight, 60)
    period = "PM" if hour >= 12 else "AM"
    if hour == 0:
        display_hour = 12
    elif hour > 12:
        display_hour = hour - 12
    else:
        display_hour = hour
    return f"{display_hour}:{minute:02d} {period}"


def _format_number(change_type: str, number) -> str:
    # Only whole minutes get unit formatting
    whole = isinstance(number, int) or float(number).is_integer()
    if not whole:
        return str(number)

    minutes = int(number)
    if change_type == AgreementChangeType.SCREEN_TIME:
        return _format_minutes(minutes)
    if change_type == AgreementChangeType.BEDTIME_SCHEDULE:
        return _format_clock(minutes)
    return str(number)


def format_agreement_value(change_type: str, value: Optional[object]) -> str:
    """
    Format an agreement change value for display.

    Args:
        change_type: Agreement section the value belongs to
        value: Tagged agreement value, or None when the section is unset

    Returns:
        Display string
    """
    if value is None:
        return "(not set)"

    if isinstance(value, BooleanValue):
        return "Enabled" if value.value else "Disabled"

    if isinstance(value, NumberValue):
        return _format_number(change_type, value.value)

    if isinstance(value, StringValue):
        if len(value.value) > MAX_STRING_DISPLAY:
            return value.value[:MAX_STRING_DISPLAY - 3] + "..."
        return value.value

    if isinstance(value, ListValue):
        items = value.value
        if not items:
            return "(empty list)"
        if len(items) <= MAX_LIST_DISPLAY:
            return ", ".join(items)
        shown = ", ".join(items[:MAX_LIST_DISPLAY])
        return f"{shown} (+{len(items) - MAX_LIST_DISPLAY} more)"

    if isinstance(value, MapValue):
        if not value.value:
            return "(empty)"
        return f"{len(value.value)} settings"

    raise TypeError(f"Unsupported agreement value: {type(value).__name__}")


def format_agreement_diff(proposal) -> str:
    """Format a proposal as "<section>: <original> → <proposed>"."""
    return describe_change(proposal.change_type, proposal.original_value, proposal.proposed_value)


def describe_change(change_type: str, original_value, proposed_value) -> str:
    """Diff string for a change that has not been stored as a proposal yet."""
    label = change_type_label(change_type)
    original = format_agreement_value(change_type, original_value)
    proposed = format_agreement_value(change_type, proposed_value)
    return f"{label}: {original} → {proposed}"
