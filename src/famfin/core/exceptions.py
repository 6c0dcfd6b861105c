"""Exceptions raised by the analytics engine."""


class InvalidInputError(ValueError):
    """Numeric input that indicates a caller bug, such as mismatched series lengths."""
