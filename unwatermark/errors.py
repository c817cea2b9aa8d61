"""Exception hierarchy shared by the pipeline and the scheduler."""

from __future__ import annotations


class UnwatermarkError(Exception):
    """Base class for every error raised by :mod:`unwatermark`."""


class ValidationError(UnwatermarkError):
    """The file was rejected before a job was created."""


class DecodeError(UnwatermarkError):
    """The source could not be opened, decoded or seeked."""


class TransformError(UnwatermarkError):
    """The watermark remover failed on a frame or an image."""


class EncodeError(UnwatermarkError):
    """The encoder session failed or produced no output."""


class UnsupportedCapabilityError(UnwatermarkError):
    """A capability required by the runtime is missing."""


class InvalidTransitionError(UnwatermarkError):
    """A job was moved to a status its lifecycle does not allow."""
