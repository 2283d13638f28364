from __future__ import annotations


class DocumentError(RuntimeError):
    """The document could not be opened or rasterized."""


class ExtractionError(RuntimeError):
    """The extraction service failed or returned no usable result."""


__all__ = ["DocumentError", "ExtractionError"]
