"""
Failure taxonomy for the receipt OCR pipeline.

Each class maps to one terminal outcome of an extraction attempt; the worker
records it as ``ocr_status='error'`` and never lets it escape to the uploader.
Missing item fields are not errors at all and are filled with defaults.
"""


class OcrError(Exception):
    """Base class for every OCR pipeline failure."""


class NotFoundError(OcrError):
    """The receipt row or its stored image does not exist."""


class TransportError(OcrError):
    """Image fetch or model API call failed at the network/HTTP layer."""


class ParseError(OcrError):
    """Model output is not a JSON object, even after the repair pass."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text
