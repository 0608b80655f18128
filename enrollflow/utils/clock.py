"""Naive-UTC time helpers; every timestamp column stores naive UTC."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"


def epoch_seconds(value: datetime) -> float:
    """Unix time of a naive-UTC (or aware) datetime, independent of the host timezone"""
    return to_naive_utc(value).replace(tzinfo=timezone.utc).timestamp()
