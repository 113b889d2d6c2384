"""
Surge Pricing Calculator.
Recurring annual date window with elevated price multiplier and job priority.

Every operation takes the date explicitly; nothing here reads the clock.
"""
import math
import calendar
import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from threading import Lock
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from creditgate.queue.priority import JobPriority

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
REMINDER_DAYS_BEFORE_START = 7
REMINDER_DAYS_BEFORE_END = 3


@dataclass(frozen=True)
class SurgeConfig:
    """Surge window configuration. Replaced as a whole, never mutated."""
    enabled: bool = True
    surge_month: int = 6
    surge_start_day: int = 15
    surge_end_day: int = 30
    surge_multiplier: float = 2.0
    normal_multiplier: float = 1.0
    reason: str = "Peak reporting season"

    def __post_init__(self):
        if not 1 <= self.surge_month <= 12:
            raise ValueError(f"surge_month must be 1..12, got {self.surge_month}")

        # Feb 29 is allowed: the window then only exists in leap years
        max_day = calendar.monthrange(2000, self.surge_month)[1]
        if not 1 <= self.surge_start_day <= max_day:
            raise ValueError(
                f"surge_start_day must be 1..{max_day} for month {self.surge_month}, "
                f"got {self.surge_start_day}"
            )
        if not self.surge_start_day <= self.surge_end_day <= 31:
            raise ValueError(
                f"surge_end_day must be {self.surge_start_day}..31, got {self.surge_end_day}"
            )

        for name in ("surge_multiplier", "normal_multiplier"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise ValueError(f"{name} must be a positive number, got {value!r}")


class SurgeChange(BaseModel):
    """Next surge state transition relative to a date."""
    event: str = Field(..., description="'end', 'start' or 'none'")
    days: int = Field(..., ge=0, description="Whole days until the event (ceiling)")


class SurgePricingInfo(BaseModel):
    """Composite surge view for a date."""
    is_surge: bool
    multiplier: float
    priority: JobPriority
    reason: str
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    time_to_change: SurgeChange


class SurgeNotification(BaseModel):
    """User-facing notice about an active or upcoming surge window."""
    type: str = Field(..., description="'start' or 'reminder'")
    message: str
    is_active: bool
    days_remaining: int = Field(..., ge=0)
    timestamp: datetime


class SurgeBanner(BaseModel):
    """Site banner for an active or imminent surge window."""
    show: bool = True
    message: str
    type: str = Field(..., description="'warning' while active, 'info' before start")


class SurgeNotice(BaseModel):
    """Entry of the surge notification feed."""
    id: str
    type: str = Field(..., description="'start', 'reminder' or 'banner'")
    message: str
    created: datetime
    active: bool


def _ceil_days(delta: timedelta) -> int:
    return max(0, math.ceil(delta.total_seconds() / SECONDS_PER_DAY))


def _window(config: SurgeConfig, year: int, tzinfo=None) -> Optional[Tuple[datetime, datetime]]:
    """Surge window for year, None if the start day does not exist that year."""
    last_day = calendar.monthrange(year, config.surge_month)[1]
    if config.surge_start_day > last_day:
        return None

    end_day = min(config.surge_end_day, last_day)
    start = datetime(year, config.surge_month, config.surge_start_day, tzinfo=tzinfo)
    end = datetime(year, config.surge_month, end_day, 23, 59, 59, 999999, tzinfo=tzinfo)
    return start, end


def _in_window(config: SurgeConfig, date: datetime) -> bool:
    if not config.enabled:
        return False
    return (
        date.month == config.surge_month
        and config.surge_start_day <= date.day <= config.surge_end_day
    )


class SurgePricingCalculator:
    """
    Computes surge state, multiplier, priority and prices for a date.

    Each public method reads the config reference once, so a concurrent
    update_config() is seen either entirely or not at all.
    """

    def __init__(self, config: Optional[SurgeConfig] = None):
        self._config = config or SurgeConfig()
        self._write_lock = Lock()
        logger.info(
            f"SurgePricingCalculator initialized: month={self._config.surge_month}, "
            f"days={self._config.surge_start_day}-{self._config.surge_end_day}, "
            f"multiplier={self._config.surge_multiplier}"
        )

    def is_surge_period(self, date: datetime) -> bool:
        """True iff date falls on a surge day of its own year."""
        return _in_window(self._config, date)

    def get_surge_multiplier(self, date: datetime) -> float:
        config = self._config
        return config.surge_multiplier if _in_window(config, date) else config.normal_multiplier

    def get_job_priority(self, date: datetime) -> JobPriority:
        return JobPriority.HIGH if self.is_surge_period(date) else JobPriority.NORMAL

    def calculate_price(self, base_price: float, date: datetime) -> float:
        """
        Price scaled by the multiplier for date.
        No rounding; currency rounding is up to the caller.
        """
        return base_price * self.get_surge_multiplier(date)

    def get_surge_window(self, year: int, tzinfo=None) -> Optional[Tuple[datetime, datetime]]:
        """Start and end instants of the surge window in year."""
        return _window(self._config, year, tzinfo)

    def get_time_to_surge_change(self, date: datetime) -> SurgeChange:
        """
        Days until the current window ends, or until the next one starts.
        """
        config = self._config
        return self._time_to_change(config, date)

    def _time_to_change(self, config: SurgeConfig, date: datetime) -> SurgeChange:
        if not config.enabled:
            return SurgeChange(event="none", days=0)

        if _in_window(config, date):
            _, end = _window(config, date.year, date.tzinfo)
            return SurgeChange(event="end", days=_ceil_days(end - date))

        # a Feb 29 start may skip up to seven years
        for year in range(date.year, date.year + 9):
            window = _window(config, year, date.tzinfo)
            if window and window[0] > date:
                return SurgeChange(event="start", days=_ceil_days(window[0] - date))

        return SurgeChange(event="none", days=0)

    def get_surge_pricing_info(self, date: datetime) -> SurgePricingInfo:
        """Surge flag, multiplier and this year's window for date."""
        config = self._config
        is_surge = _in_window(config, date)
        window = _window(config, date.year, date.tzinfo)

        return SurgePricingInfo(
            is_surge=is_surge,
            multiplier=config.surge_multiplier if is_surge else config.normal_multiplier,
            priority=JobPriority.HIGH if is_surge else JobPriority.NORMAL,
            reason=config.reason if is_surge else "Standard pricing",
            window_start=window[0] if window else None,
            window_end=window[1] if window else None,
            time_to_change=self._time_to_change(config, date),
        )

    def get_notification(self, date: datetime) -> Optional[SurgeNotification]:
        """
        Notice for UI banners: active window, or one starting within a week.
        """
        config = self._config
        change = self._time_to_change(config, date)

        if change.event == "end":
            near_end = change.days <= REMINDER_DAYS_BEFORE_END
            message = (
                f"Surge pricing is active: credits cost x{config.surge_multiplier}. "
                f"{change.days} day(s) remaining."
            )
            return SurgeNotification(
                type="reminder" if near_end else "start",
                message=message,
                is_active=True,
                days_remaining=change.days,
                timestamp=date,
            )

        if change.event == "start" and 0 < change.days <= REMINDER_DAYS_BEFORE_START:
            return SurgeNotification(
                type="reminder",
                message=(
                    f"Surge pricing starts in {change.days} day(s). "
                    f"Top up your credits before prices rise x{config.surge_multiplier}."
                ),
                is_active=False,
                days_remaining=change.days,
                timestamp=date,
            )

        return None

    def get_banner_info(self, date: datetime) -> Optional[SurgeBanner]:
        """Banner while the window is active or starts within a week, else None."""
        config = self._config
        return self._banner(config, date, self._time_to_change(config, date))

    def _banner(self, config: SurgeConfig, date: datetime, change: SurgeChange) -> Optional[SurgeBanner]:
        if change.event == "end":
            return SurgeBanner(
                message=(
                    f"Surge pricing is active: credits cost x{config.surge_multiplier}. "
                    f"{change.days} day(s) remaining."
                ),
                type="warning",
            )

        if change.event == "start" and 0 < change.days <= REMINDER_DAYS_BEFORE_START:
            start = date + timedelta(days=change.days)
            return SurgeBanner(
                message=f"Top up your credits before surge pricing starts on {start:%Y-%m-%d}.",
                type="info",
            )

        return None

    def get_notifications(self, date: datetime) -> List[SurgeNotice]:
        """
        Active entries of the notification feed for date: the banner, the
        window start notice, and a reminder from the middle of the window on.
        """
        config = self._config
        notices: List[SurgeNotice] = []

        banner = self._banner(config, date, self._time_to_change(config, date))
        if banner is not None:
            notices.append(SurgeNotice(
                id="surge-banner",
                type="banner",
                message=banner.message,
                created=date,
                active=True,
            ))

        window = _window(config, date.year, date.tzinfo)
        if window is None or not _in_window(config, date):
            return notices

        start, end = window
        middle = start + (end - start) / 2

        notices.append(SurgeNotice(
            id="surge-start",
            type="start",
            message=(
                f"Surge pricing has started: credits cost x{config.surge_multiplier} "
                f"until {end:%Y-%m-%d}."
            ),
            created=start,
            active=True,
        ))
        if date >= middle:
            notices.append(SurgeNotice(
                id="surge-reminder",
                type="reminder",
                message=f"Reminder: surge pricing is still active. Credits cost x{config.surge_multiplier}.",
                created=middle,
                active=True,
            ))

        return notices

    def will_be_surge_active(self, start: datetime, end: datetime) -> bool:
        """Whether [start, end] overlaps any yearly surge window."""
        config = self._config
        if not config.enabled or end < start:
            return False

        for year in range(start.year, end.year + 1):
            window = _window(config, year, start.tzinfo)
            if window and start <= window[1] and end >= window[0]:
                return True
        return False

    def update_config(self, **changes) -> SurgeConfig:
        """
        Replace the config with a copy carrying changes.
        Raises ValueError for unknown fields or invalid values; the old
        config stays in place in that case.
        """
        known = {f.name for f in fields(SurgeConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown surge config fields: {sorted(unknown)}")

        with self._write_lock:
            new_config = replace(self._config, **changes)
            self._config = new_config

        logger.info(f"Surge config updated: {new_config}")
        return new_config

    def get_config(self) -> SurgeConfig:
        """Copy of the current config."""
        return replace(self._config)
