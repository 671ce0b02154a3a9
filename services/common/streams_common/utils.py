import uuid


def new_job_id() -> str:
    return uuid.uuid4().hex[:12]


def tail_text(text: str, limit: int = 1200) -> str:
    """
    Last `limit` chars of tool output, on one line.
    Tools print progress first and the actual error last.
    """
    s = (text or "").strip().replace("\n", " | ")
    if len(s) > limit:
        s = "..." + s[-limit:]
    return s


def media_type_of(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()
