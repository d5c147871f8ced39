from datetime import datetime, timezone, timedelta
from typing import Optional

# India Standard Time (UTC+5:30)
IST = timezone(timedelta(hours=5, minutes=30))

def now_ist() -> datetime:
    """Return a timezone-aware datetime in IST (UTC+5:30)."""
    return datetime.now(IST)

def now_ist_iso() -> str:
    """Return current IST time as ISO-8601 string including offset."""
    return now_ist().isoformat()

def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes read back from storage as IST."""
    if value.tzinfo is None:
        return value.replace(tzinfo=IST)
    return value

def elapsed_seconds(start: Optional[datetime], end: datetime) -> int:
    """Whole seconds between two instants, floored and never negative."""
    if start is None:
        return 0
    delta = (ensure_aware(end) - ensure_aware(start)).total_seconds()
    return max(0, int(delta // 1))
