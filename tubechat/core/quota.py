"""Per-user quota ledger and the selection guard built on top of it.

All video-hour changes go through single UPDATE statements
(``video_hours_left = video_hours_left - :h``) so concurrent debits and
refunds for the same user cannot overwrite each other.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from tubechat.config import Settings
from tubechat.core.duration import hours_for_minutes
from tubechat.models.quota import Quota
from tubechat.models.schemas import CatalogItem, QuotaInfo

logger = logging.getLogger(__name__)

_SETTABLE_FIELDS = ("messages_left", "video_hours_left", "reset_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _first_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(moment.year, moment.month + 1, 1, tzinfo=timezone.utc)


def next_reset_date(now: datetime | None = None) -> datetime:
    """First day of the month after ``now`` (UTC)."""
    return _first_of_next_month(now or _utcnow())


def valid_reset_date(current_reset_at: datetime, now: datetime | None = None) -> datetime:
    """Advance a stale reset date month by month until it lies in the future."""
    now = now or _utcnow()
    reset = _as_utc(current_reset_at)
    while reset <= now:
        reset = _first_of_next_month(reset)
    return reset


class QuotaLedger:
    """Read and update a user's remaining messages and video-hours."""

    def __init__(self, session: Session, settings: Settings):
        self.session = session
        self.default_messages = settings.default_messages_quota
        self.default_video_hours = settings.default_video_hours_quota

    def get(self, user_email: str) -> Quota:
        """Return the user's quota, creating or rolling it over as needed.

        A missing quota is created with the default allowance. When
        ``reset_at`` has passed, the message allowance is restored and the
        reset date moved forward; video-hours are not touched.
        """
        quota = self.session.get(Quota, user_email)
        if quota is None:
            quota = Quota(
                user_email=user_email,
                messages_left=self.default_messages,
                video_hours_left=self.default_video_hours,
                reset_at=next_reset_date(),
            )
            self.session.add(quota)
            self.session.commit()
            logger.info("Created default quota for %s", user_email)
            return quota

        if _as_utc(quota.reset_at) <= _utcnow():
            quota.messages_left = self.default_messages
            quota.reset_at = valid_reset_date(quota.reset_at)
            self.session.commit()
            logger.info("Reset message quota for %s until %s", user_email, quota.reset_at)

        return quota

    def set(self, user_email: str, **fields) -> Quota:
        """Overwrite one or more quota fields with absolute values."""
        unknown = set(fields) - set(_SETTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown quota fields: {sorted(unknown)}")
        for name in ("messages_left", "video_hours_left"):
            if name in fields and fields[name] < 0:
                raise ValueError(f"{name} cannot be negative: {fields[name]}")

        quota = self.get(user_email)
        for name, value in fields.items():
            setattr(quota, name, value)
        self.session.commit()
        return quota

    def debit_hours(self, user_email: str, hours: int, commit: bool = True) -> bool:
        """Atomically consume video-hours.

        Returns False, without changing anything, when fewer than ``hours``
        remain.
        """
        if hours <= 0:
            return True
        self.get(user_email)
        result = self.session.execute(
            update(Quota)
            .where(Quota.user_email == user_email, Quota.video_hours_left >= hours)
            .values(video_hours_left=Quota.video_hours_left - hours)
        )
        if commit:
            self.session.commit()
        debited = result.rowcount == 1
        if debited:
            logger.info("Debited %d video-hours from %s", hours, user_email)
        else:
            logger.info("Insufficient video-hours for %s (needs %d)", user_email, hours)
        return debited

    def credit_hours(self, user_email: str, hours: int, commit: bool = True) -> int:
        """Atomically return video-hours to the user. Returns the hours credited."""
        if hours <= 0:
            return 0
        self.get(user_email)
        self.session.execute(
            update(Quota)
            .where(Quota.user_email == user_email)
            .values(video_hours_left=Quota.video_hours_left + hours)
        )
        if commit:
            self.session.commit()
        logger.info("Credited %d video-hours to %s", hours, user_email)
        return hours

    def reset_messages(self, user_email: str) -> Quota:
        """Restore the default message allowance and restart the monthly period."""
        return self.set(
            user_email,
            messages_left=self.default_messages,
            reset_at=next_reset_date(),
        )


def to_quota_info(quota: Quota) -> QuotaInfo:
    return QuotaInfo(
        user_email=quota.user_email,
        messages_left=quota.messages_left,
        video_hours_left=quota.video_hours_left,
        reset_at=_as_utc(quota.reset_at),
    )


# ── Selection guard ──────────────────────────────────────────────


@dataclass
class SelectionResult:
    selected: list[CatalogItem] = field(default_factory=list)
    skipped: list[CatalogItem] = field(default_factory=list)
    total_minutes: int = 0

    @property
    def requested(self) -> int:
        return len(self.selected) + len(self.skipped)

    @property
    def hours_needed(self) -> int:
        return hours_for_minutes(self.total_minutes)


@dataclass
class QuotaCheck:
    allowed: bool
    hours_needed: int
    hours_left: int


def can_add(
    candidate_minutes: int,
    already_selected_minutes: int,
    quota: Quota | QuotaInfo,
) -> bool:
    """Whether adding a candidate keeps the selection within the budget."""
    new_hours = hours_for_minutes(already_selected_minutes + candidate_minutes)
    return new_hours <= quota.video_hours_left


def select_all(
    candidates: Iterable[CatalogItem],
    quota: Quota | QuotaInfo,
    already_selected_minutes: int = 0,
) -> SelectionResult:
    """Greedily select candidates in catalog order, skipping those over budget."""
    result = SelectionResult()
    running = already_selected_minutes
    for item in candidates:
        if can_add(item.duration_in_minutes, running, quota):
            result.selected.append(item)
            result.total_minutes += item.duration_in_minutes
            running += item.duration_in_minutes
        else:
            result.skipped.append(item)
    return result


def check_batch(items: Iterable[CatalogItem], quota: Quota | QuotaInfo) -> QuotaCheck:
    """Authoritative check that a whole batch fits in the remaining budget."""
    total = sum(i.duration_in_minutes for i in items)
    return QuotaCheck(
        allowed=quota.video_hours_left > 0 and can_add(total, 0, quota),
        hours_needed=hours_for_minutes(total),
        hours_left=quota.video_hours_left,
    )
