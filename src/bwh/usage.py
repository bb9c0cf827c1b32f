"""
Usage statistics helpers shared by the CLI and the MCP tools.

getRawUsageStats returns one data point per 5 minutes, ending at the
point's timestamp. Everything here is a pure function over those points.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .types import UsageDataPoint

SAMPLE_SECONDS = 300

BUCKETS = {
    "5m": 5 * 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
}

PERIOD_DAYS = {"1d": 1, "7d": 7, "1m": 30}


def rfc3339(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_days(period: str = "", days: int = 0) -> int:
    """
    Lookback in days: explicit ``days`` wins, then an ``<n>d`` period.

    Anything else (including 0 or a malformed period) means one day.
    """
    if days and days > 0:
        return int(days)
    period = (period or "").strip()
    if len(period) > 1 and period.endswith("d") and period[:-1].isdigit():
        n = int(period[:-1])
        if n > 0:
            return n
    return 1


def filter_by_period(points: Sequence[UsageDataPoint], period: str,
                     now: Optional[float] = None) -> List[UsageDataPoint]:
    """Points newer than the period (1d, 7d, 1m or all), oldest first."""
    ordered = sorted(points, key=lambda p: p.timestamp)
    if period == "all":
        return ordered
    now = time.time() if now is None else now
    cutoff = now - PERIOD_DAYS.get(period, 1) * 86400
    return [p for p in ordered if p.timestamp > cutoff]


class _Accumulator:
    def __init__(self):
        self.count = 0
        self.cpu_sum = 0.0
        self.cpu_min = None
        self.cpu_max = None
        self.net_in = 0
        self.net_out = 0
        self.disk_read = 0
        self.disk_write = 0

    def add(self, point: UsageDataPoint) -> None:
        cpu = point.cpu_usage
        self.count += 1
        self.cpu_sum += cpu
        self.cpu_min = cpu if self.cpu_min is None else min(self.cpu_min, cpu)
        self.cpu_max = cpu if self.cpu_max is None else max(self.cpu_max, cpu)
        self.net_in += point.network_in_bytes
        self.net_out += point.network_out_bytes
        self.disk_read += point.disk_read_bytes
        self.disk_write += point.disk_write_bytes

    @property
    def cpu_avg(self) -> float:
        return self.cpu_sum / self.count if self.count else 0.0


def summarize(points: Sequence[UsageDataPoint]) -> Dict[str, Any]:
    """Totals and CPU range over ``points``; empty dict when there are none."""
    if not points:
        return {}
    acc = _Accumulator()
    for point in points:
        acc.add(point)
    first = min(p.timestamp for p in points)
    last = max(p.timestamp for p in points)
    return {
        "points": acc.count,
        "time_start": rfc3339(first),
        "time_end": rfc3339(last),
        # the first sample covers the 5 minutes before its timestamp
        "duration_sec": max(last - first, 0) + SAMPLE_SECONDS,
        "cpu": {"avg": acc.cpu_avg, "min": acc.cpu_min, "max": acc.cpu_max},
        "network_bytes": {"in_total": acc.net_in, "out_total": acc.net_out},
        "disk_bytes": {"read_total": acc.disk_read, "write_total": acc.disk_write},
    }


def aggregate(points: Sequence[UsageDataPoint], days: int = 1, group_by: str = "day",
              now: Optional[float] = None) -> Dict[str, Any]:
    """
    Bucket the last ``days`` of points by 5m, hour or day (UTC aligned).

    Unknown ``group_by`` values fall back to day.
    """
    if group_by not in BUCKETS:
        group_by = "day"
    width = BUCKETS[group_by]
    now = time.time() if now is None else now
    cutoff = int(now) - days * 86400

    selected = [p for p in points if p.timestamp >= cutoff]
    buckets: Dict[int, _Accumulator] = {}
    for point in selected:
        start = point.timestamp - point.timestamp % width
        buckets.setdefault(start, _Accumulator()).add(point)

    result: Dict[str, Any] = {
        "range": {"days": days, "group_by": group_by},
        "buckets": [
            {
                "start_rfc3339": rfc3339(start),
                "points": acc.count,
                "cpu_avg": acc.cpu_avg,
                "cpu_min": acc.cpu_min,
                "cpu_max": acc.cpu_max,
                "net_in_total_bytes": acc.net_in,
                "net_out_total_bytes": acc.net_out,
                "disk_read_total_bytes": acc.disk_read,
                "disk_write_total_bytes": acc.disk_write,
            }
            for start, acc in sorted(buckets.items())
        ],
    }
    if selected:
        result["summary"] = summarize(selected)
    return result


def monthly_bandwidth(plan_monthly_data: int, data_counter: int, multiplier: int) -> Dict[str, Any]:
    """Used/limit in billable bytes; the provider counts raw bytes / multiplier."""
    multiplier = multiplier or 1
    limit = plan_monthly_data * multiplier
    used = data_counter * multiplier
    return {
        "used": used,
        "limit": limit,
        "percent": (used / limit * 100) if limit > 0 else 0.0,
        "remaining": limit - used,
        "multiplier": multiplier,
    }
