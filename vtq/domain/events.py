from typing import List
from pydantic import BaseModel
from .models import EncodeJob

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class JobEvent(Event):
    job: EncodeJob

class JobSubmitted(JobEvent):
    pass

class JobStarted(JobEvent):
    pass

class JobProgressUpdated(JobEvent):
    progress_percent: int

class JobCompleted(JobEvent):
    manifest_url: str

class JobFailed(JobEvent):
    error_message: str

class QueueUpdated(Event):
    pending_ids: List[int]
    processing_ids: List[int]
