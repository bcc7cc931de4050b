from datetime import datetime, timezone
from typing import Any


def now() -> datetime:
    """Current UTC time as a naive datetime.
    All DateTime columns store naive UTC, this is the one clock the project uses.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_tzinfo() -> datetime:
    return datetime.now(timezone.utc)


def serialize(obj: Any) -> Any:
    # datetime → ISO string
    if isinstance(obj, datetime):
        return obj.isoformat()

    if isinstance(obj, dict):
        return {k: serialize(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [serialize(v) for v in obj]

    return obj
