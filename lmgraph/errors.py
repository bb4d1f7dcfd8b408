"""Exceptions raised while reading language models."""


class LmFormatError(ValueError):
    """Fatal error in a language model file or table.

    Raised for malformed headers, sections and records. No automaton is
    returned once this has been raised.
    """
