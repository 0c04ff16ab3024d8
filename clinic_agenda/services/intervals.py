"""
Half-open interval algebra.

Intervals are ``[start, end)``: two intervals that merely touch do not
overlap. Lists returned by these helpers are sorted by start and contain no
overlapping or touching members.
"""

from datetime import datetime
from typing import Iterable, List

from clinic_agenda.models.resources import TimeInterval


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def contains(outer: TimeInterval, start: datetime, end: datetime) -> bool:
    return outer.start <= start and end <= outer.end


def merge(intervals: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Sort and coalesce overlapping or touching intervals."""
    merged: List[TimeInterval] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and interval.start <= merged[-1].end:
            if interval.end > merged[-1].end:
                merged[-1] = TimeInterval(start=merged[-1].start, end=interval.end)
            continue
        merged.append(interval)
    return merged


def subtract(base: Iterable[TimeInterval], removed: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Remove every ``removed`` interval from ``base``."""
    removed = merge(removed)
    result: List[TimeInterval] = []
    for interval in merge(base):
        cursor = interval.start
        for cut in removed:
            if cut.end <= cursor:
                continue
            if cut.start >= interval.end:
                break
            if cut.start > cursor:
                result.append(TimeInterval(start=cursor, end=cut.start))
            cursor = max(cursor, cut.end)
            if cursor >= interval.end:
                break
        if cursor < interval.end:
            result.append(TimeInterval(start=cursor, end=interval.end))
    return result


def intersect(a: Iterable[TimeInterval], b: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Pairwise intersection of two interval sets."""
    left, right = merge(a), merge(b)
    result: List[TimeInterval] = []
    i = j = 0
    while i < len(left) and j < len(right):
        start = max(left[i].start, right[j].start)
        end = min(left[i].end, right[j].end)
        if start < end:
            result.append(TimeInterval(start=start, end=end))
        if left[i].end < right[j].end:
            i += 1
        else:
            j += 1
    return result
