from __future__ import annotations


class SizefitError(Exception):
    """Base class for everything the engine raises on purpose."""


class UnsupportedFormatError(SizefitError):
    """Requested output format is not one we can produce."""

    def __init__(self, fmt: str, reason: str) -> None:
        super().__init__(f"Format {fmt} not supported: {reason}")
        self.format = fmt
        self.reason = reason


class DecodeError(SizefitError):
    """An input could not be read as an image or a PDF."""


class EncodeError(SizefitError):
    """The codec refused one encode attempt."""


class PersistError(SizefitError):
    """The sink could not store a finished artifact."""
