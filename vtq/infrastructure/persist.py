import logging
from typing import Protocol

logger = logging.getLogger(__name__)

class UrlPersister(Protocol):
    """Replaces a stored video URL with the manifest URL.

    Every record whose URL equals original_url is updated. Returns the number
    of records changed; zero is a valid outcome. Raises PersistError when the
    update itself fails.
    """

    def update_video_url(self, original_url: str, manifest_url: str) -> int:
        ...

class LoggingUrlPersister:
    """Persister for standalone runs: records the mapping in the log only."""

    def __init__(self):
        self.updates = {}

    def update_video_url(self, original_url: str, manifest_url: str) -> int:
        if not original_url:
            return 0
        self.updates[original_url] = manifest_url
        logger.info(f"URL mapping: {original_url} -> {manifest_url}")
        return 1
