from datetime import date, datetime, time, timedelta, timezone

END_OF_DAY = time(23, 59, 59, 999_000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def end_of_day(value: date) -> datetime:
    """Last instant of the day at millisecond precision, 23:59:59.999 UTC."""
    return datetime.combine(value, END_OF_DAY, tzinfo=timezone.utc)


def next_day_start(value: date) -> datetime:
    return start_of_day(value + timedelta(days=1))
