"""
pagetap/utils/exceptions.py

Custom exceptions for pagetap.

Contains:
- PagetapError: Base class
- DecodeError: Malformed or unrecognized instrumentation payload
- InvalidHistoryConfigError: Bad history store capacity/batch settings
- CDPConnectionError: CDP session could not be established or a command failed
"""


class PagetapError(Exception):
    """
    Base exception for all pagetap errors.
    """


class DecodeError(PagetapError):
    """
    Raised when an instrumentation payload cannot be decoded into a typed event.
    Never escapes the correlation engine; it is logged and the payload is dropped.
    """


class InvalidHistoryConfigError(PagetapError):
    """
    Raised when the history store is constructed with an unusable capacity or eviction batch size.
    """


class CDPConnectionError(PagetapError):
    """
    Raised when unable to attach to a page target or when a CDP command returns an error.
    """
