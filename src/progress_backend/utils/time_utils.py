import typing
from datetime import date, datetime, timezone

from progress_backend.utils.base_types import IsoDate, IsoTimestamp

Clock = typing.Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_timestamp(moment: datetime) -> IsoTimestamp:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return IsoTimestamp(moment.astimezone(timezone.utc).isoformat())


def to_iso_date(moment: datetime) -> IsoDate:
    """Calendar date (UTC) used for streak bookkeeping."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return IsoDate(moment.date().isoformat())


def days_between(earlier: IsoDate, later: IsoDate) -> int:
    return (date.fromisoformat(later) - date.fromisoformat(earlier)).days


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; percentages and XP round 0.5 upwards.
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
