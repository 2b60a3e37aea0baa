from datetime import datetime, timezone


def utcnow():
    # Naive UTC, matching how the DateTime columns are stored
    return datetime.now(timezone.utc).replace(tzinfo=None)
