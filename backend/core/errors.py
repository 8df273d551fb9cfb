"""Exception types shared by the sync services."""


class MalformedRecord(ValueError):
    """A provider item that cannot be turned into a cacheable record."""


class CacheWriteError(Exception):
    """A cache write violated a constraint or targeted a missing row."""

    def __init__(self, message: str, video_ids: list[str] | None = None):
        super().__init__(message)
        self.video_ids = video_ids or []
