"""Restriction evaluation for party composition against preference windows."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Sequence

from teesheet.domain.models import (
    FrequencyViolation,
    PreferenceWindow,
    RestrictionCategory,
    RestrictionRule,
    WindowVerdict,
)


def _rule_applies_to_party(
    rule: RestrictionRule,
    party_member_classes: Sequence[str],
    has_guests_or_fills: bool,
) -> bool:
    if not rule.is_active or rule.category is not RestrictionCategory.MEMBER_CLASS:
        return False
    if rule.requires_no_guests and has_guests_or_fills:
        # Guest-accompanied bookings draw from a different admission pool.
        return False
    return rule.classes.intersects(party_member_classes)


def _reason_for(
    rule: RestrictionRule,
    window: PreferenceWindow,
    party_member_classes: Sequence[str],
) -> str:
    if rule.description.strip():
        return rule.description.strip()
    if rule.classes.universal:
        who = "all member classes"
    else:
        who = ", ".join(sorted(set(party_member_classes) & rule.classes.values))
    return f"{rule.name}: {who} may not book {window.label} ({window.time_range})"


def evaluate_restrictions(
    windows: Sequence[PreferenceWindow],
    rules: Iterable[RestrictionRule],
    party_member_classes: Iterable[str],
    has_guests_or_fills: bool,
) -> dict[int, WindowVerdict]:
    """Return a verdict per window index for the given party.

    Every applicable MEMBER_CLASS rule contributes a reason to each window in
    its scope; reasons accumulate so callers can show all causes at once.
    FREQUENCY rules never restrict a window here.
    """
    classes = list(party_member_classes)
    reasons: dict[int, list[str]] = defaultdict(list)

    for rule in rules:
        if not _rule_applies_to_party(rule, classes, has_guests_or_fills):
            continue
        for window in windows:
            if rule.windows.contains(window.index):
                reasons[window.index].append(_reason_for(rule, window, classes))

    return {
        window.index: WindowVerdict(
            is_fully_restricted=bool(reasons.get(window.index)),
            reasons=tuple(reasons.get(window.index, ())),
        )
        for window in windows
    }


def _period_label(period_days: int) -> str:
    if period_days == 7:
        return "week"
    if period_days == 30:
        return "month"
    return f"{period_days} days"


def check_frequency(
    rules: Iterable[RestrictionRule],
    member_class: str,
    lottery_date: date,
    booking_dates: Iterable[date],
) -> list[FrequencyViolation]:
    """Return FREQUENCY violations for one more booking on ``lottery_date``.

    The period is a rolling window ending on the lottery date. Violations are
    a billing signal for the caller and never block the booking.
    """
    dates = list(booking_dates)
    violations: list[FrequencyViolation] = []
    for rule in rules:
        if not rule.is_active or rule.category is not RestrictionCategory.FREQUENCY:
            continue
        if not rule.classes.contains(member_class):
            continue
        if not rule.max_count or not rule.period_days:
            continue

        period_start = lottery_date - timedelta(days=rule.period_days)
        current_count = sum(1 for booked in dates if period_start <= booked <= lottery_date)
        if current_count + 1 <= rule.max_count:
            continue

        label = _period_label(rule.period_days)
        violations.append(
            FrequencyViolation(
                rule_id=rule.rule_id,
                rule_name=rule.name,
                current_count=current_count,
                max_count=rule.max_count,
                period_days=rule.period_days,
                message=(
                    f"Booking limit reached ({current_count}/{rule.max_count} "
                    f"in the last {label})"
                ),
            )
        )
    return violations
