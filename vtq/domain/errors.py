from typing import Optional

class TranscodeError(Exception):
    """Base class for every error a transcoding job can end with."""

class ProbeError(TranscodeError):
    """Source file is missing, unreadable or has no usable video stream."""

class EncodeError(TranscodeError):
    """The encoder process failed or produced unusable output."""

    def __init__(self, message: str, returncode: Optional[int] = None, output_tail: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output_tail = output_tail

class LadderError(TranscodeError):
    """A resolution ladder broke one of its invariants. Indicates a bug."""

class PersistError(TranscodeError):
    """Updating stored video URLs after a successful encode failed."""
