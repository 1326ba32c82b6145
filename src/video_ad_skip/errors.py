"""Exceptions raised by detection runs and their collaborators."""


class AdSkipError(Exception):
    """Base class for errors raised by this package."""


class InvalidDetectionError(AdSkipError):
    """Model output parsed, but the detection does not have the expected shape."""


class MetadataError(AdSkipError):
    """Video info, comments or captions could not be fetched."""


class TranscriptionError(AdSkipError):
    """Audio could not be downloaded or transcribed."""
