"""
Error handling for the episode stamper.

Provides specific exception types for the different failure modes of a
stamping run, with enough context for logs and user feedback.
"""

from enum import Enum
from typing import Dict, List, Optional, Any


class ErrorKind(str, Enum):
    """Cell-local failure categories."""
    DECODE = "decode"
    SURFACE = "surface"
    ENCODE = "encode"


class StamperError(Exception):
    """Base exception for all stamper errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 suggestions: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'details': self.details,
            'suggestions': self.suggestions
        }


class ValidationError(StamperError):
    """Raised when user input validation fails."""
    pass


class ConfigurationError(StamperError):
    """Raised when configuration is invalid or missing."""
    pass


class ProcessingError(StamperError):
    """Raised when the stamping pipeline fails."""
    pass


class RenderError(ProcessingError):
    """Raised when a single render cell fails."""

    kind: Optional[ErrorKind] = None


class DecodeError(RenderError):
    """Raised when a source raster cannot be decoded."""

    kind = ErrorKind.DECODE

    def __init__(self, identifier: str, reason: str = None):
        super().__init__(
            f"Could not decode image: {identifier}",
            details={
                'identifier': identifier,
                'reason': reason
            },
            suggestions=[
                "Use JPG, PNG, WEBP or another format Pillow can read",
                "Ensure the file is not truncated or corrupted",
                "Try re-exporting the image from its original editor"
            ]
        )


class SurfaceError(RenderError):
    """Raised when a drawing surface cannot be allocated or initialized."""

    kind = ErrorKind.SURFACE

    def __init__(self, width: int, height: int, reason: str = None):
        super().__init__(
            f"Could not allocate {width}x{height} drawing surface",
            details={
                'width': width,
                'height': height,
                'reason': reason
            },
            suggestions=[
                "Check the output size configuration",
                "Reduce the output dimensions"
            ]
        )


class EncodeError(RenderError):
    """Raised when a finished surface cannot be encoded."""

    kind = ErrorKind.ENCODE

    def __init__(self, output_format: str, reason: str = None):
        super().__init__(
            f"Could not encode surface as {output_format}",
            details={
                'output_format': output_format,
                'reason': reason
            },
            suggestions=[
                "Try the other output format (png/jpeg)",
                "Re-run the batch"
            ]
        )


class RunInProgressError(ProcessingError):
    """Raised when a run is started while another one is still in flight."""

    def __init__(self):
        super().__init__(
            "A stamping run is already in progress",
            suggestions=["Wait for the current run to finish or start a new session run"]
        )


class RunSupersededError(ProcessingError):
    """Raised inside a run that was invalidated by a newer run or a reset."""

    def __init__(self, run_id: int, done: int, total: int):
        super().__init__(
            f"Run {run_id} was superseded after {done}/{total} cells",
            details={'run_id': run_id, 'done': done, 'total': total}
        )


def create_error_recovery_suggestions(error: Exception, context: Dict[str, Any] = None) -> List[str]:
    """Generate contextual recovery suggestions for any error."""
    suggestions = []

    if isinstance(error, StamperError):
        suggestions.extend(error.suggestions)

    if context:
        if context.get('decode_failures', 0) > 0:
            suggestions.append("Remove or replace the images that failed to load")

        if context.get('encode_failures', 0) > 0:
            suggestions.append("Re-run the batch; encoding failures are not retried automatically")

    if not suggestions:
        suggestions = [
            "Check the input files and configuration",
            "Re-run the batch",
        ]

    return suggestions
