from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """Last known build result of one artifact.

    Unknown keys written by newer versions are kept and written back.
    """
    model_config = ConfigDict(extra="allow")

    digest: str
    image: str
    image_id: Optional[str] = None
    remote_digest: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def matches(self, digest: str) -> bool:
        return self.digest == digest

    def update_timestamp(self):
        """Update the last modified timestamp"""
        self.updated_at = datetime.now()
