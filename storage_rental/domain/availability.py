"""Date-range rules shared by the availability index and booking workflow.

Booking ranges are half-open: a booking for [start, end) occupies the
location from ``start`` up to, but not including, ``end``. A booking that
ends on 2024-06-08 therefore never conflicts with one starting 2024-06-08.
"""

from datetime import date


def overlaps(
    start: date,
    end: date,
    other_start: date,
    other_end: date,
) -> bool:
    return start < other_end and end > other_start


def nights_between(start: date, end: date) -> int:
    return (end - start).days


