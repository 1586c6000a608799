"""Adaptive rate limiting driven by Graph API usage headers."""

import json
from datetime import datetime
from typing import Mapping, Optional

from graphsnap.models.data_models import UsageSnapshot
from graphsnap.utils.config import RATE_LIMIT_WAIT, WAIT_BEFORE_NEXT_FETCH
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)

# Usage thresholds (percent of the rolling window)
LOW_USAGE = 20
MEDIUM_USAGE = 50
HIGH_USAGE = 80
CRITICAL_USAGE = 95

# Delays (seconds)
MODERATE_DELAY = 2.0
HIGH_DELAY = 5.0
CRITICAL_DELAY = 15.0


class RateUsageTracker:
    """
    Tracks Graph API quota consumption from the x-app-usage header.

    Facebook reports usage as percentages of a rolling one-hour budget:
        {"call_count": 28, "total_cputime": 15, "total_time": 24}

    The tracker keeps the most recent snapshot and maps its highest
    field to a delay between requests:
    - below 20%: no delay
    - 20-49%: minimum delay
    - 50-79%: 2s
    - 80-94%: 5s
    - 95% and above: 15s
    """

    def __init__(self, min_delay: float = WAIT_BEFORE_NEXT_FETCH, rate_limit_wait: float = RATE_LIMIT_WAIT):
        """
        Initialize tracker.

        Args:
            min_delay: Delay in seconds used for normal usage (20-49%)
            rate_limit_wait: Fallback wait in seconds for a 429 without hints
        """
        # Never above the moderate tier, or higher usage could wait less
        self.min_delay = min(max(min_delay, 0.0), MODERATE_DELAY)
        self.rate_limit_wait = rate_limit_wait
        self.snapshot = UsageSnapshot()
        self.updates = 0

    def record_usage(self, header_value: Optional[str]) -> bool:
        """
        Update the snapshot from a raw x-app-usage header value.

        Args:
            header_value: Header value (JSON object) or None

        Returns:
            True if the snapshot was replaced
        """
        if not header_value:
            return False

        try:
            usage = json.loads(header_value)
            if not isinstance(usage, dict):
                raise ValueError("usage header is not an object")
            snapshot = UsageSnapshot(
                call_count=float(usage.get("call_count") or 0),
                total_cputime=float(usage.get("total_cputime") or 0),
                total_time=float(usage.get("total_time") or 0),
                observed_at=datetime.now(),
            )
        except (ValueError, TypeError) as e:
            logger.debug(f"Ignoring unparsable x-app-usage header {header_value!r}: {e}")
            return False

        self.snapshot = snapshot
        self.updates += 1
        return True

    def max_usage_percent(self) -> float:
        """Get the highest usage percentage of the current snapshot."""
        return self.snapshot.max_percent

    def recommended_delay(self) -> float:
        """
        Calculate the delay before the next request.

        Returns:
            Delay in seconds
        """
        usage = self.max_usage_percent()

        if usage >= CRITICAL_USAGE:
            return CRITICAL_DELAY
        if usage >= HIGH_USAGE:
            return HIGH_DELAY
        if usage >= MEDIUM_USAGE:
            return MODERATE_DELAY
        if usage >= LOW_USAGE:
            return self.min_delay
        return 0.0

    def retry_wait_from_headers(self, headers: Mapping[str, str]) -> float:
        """
        Work out how long to wait after a 429 response.

        Checks Retry-After (seconds) first, then the first
        estimated_time_to_regain_access (minutes) in
        x-business-use-case-usage.

        Args:
            headers: Response headers (case-insensitive mapping)

        Returns:
            Wait in seconds
        """
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return float(int(retry_after.strip()))
            except ValueError:
                pass

        business = headers.get("x-business-use-case-usage")
        if business:
            try:
                data = json.loads(business)
                for entries in data.values():
                    if not isinstance(entries, list):
                        continue
                    for entry in entries:
                        minutes = entry.get("estimated_time_to_regain_access")
                        if minutes:
                            return float(minutes) * 60
            except (ValueError, TypeError, AttributeError) as e:
                logger.debug(f"Ignoring unparsable x-business-use-case-usage header: {e}")

        return self.rate_limit_wait

    def format_status(self) -> str:
        """
        Format usage for display.

        Returns:
            One-line status string
        """
        usage = self.max_usage_percent()
        if usage >= CRITICAL_USAGE:
            level = "CRITICAL"
        elif usage >= HIGH_USAGE:
            level = "HIGH"
        elif usage >= MEDIUM_USAGE:
            level = "MODERATE"
        else:
            level = "OK"

        if self.snapshot.observed_at is None:
            updated = "never"
        else:
            updated = f"{int((datetime.now() - self.snapshot.observed_at).total_seconds())}s ago"

        return (
            f"[{level}] Rate limit: calls={self.snapshot.call_count:g}% "
            f"cpu={self.snapshot.total_cputime:g}% time={self.snapshot.total_time:g}% "
            f"(updated {updated})"
        )

    def get_stats(self) -> dict:
        """
        Get tracker statistics.

        Returns:
            Dictionary with stats
        """
        return {
            "call_count": self.snapshot.call_count,
            "total_cputime": self.snapshot.total_cputime,
            "total_time": self.snapshot.total_time,
            "max_usage_percent": self.max_usage_percent(),
            "recommended_delay": self.recommended_delay(),
            "last_updated": self.snapshot.observed_at,
            "updates": self.updates,
        }

    def reset(self) -> None:
        """Reset tracker state."""
        self.snapshot = UsageSnapshot()
        self.updates = 0
        logger.debug("Rate usage tracker reset")
