"""
Exceptions raised by pynpipe.

Platform errors (``OSError`` on posix, ``pywintypes.error`` on windows) are
translated into these at the transport boundary, so callers only need to
handle the classes below.
"""


class NamedPipeError(Exception):

    def __init__(self, msg):
        Exception.__init__(self, msg)
        self.msg = msg

    def __str__(self):
        return self.msg


class EndpointUnavailable(NamedPipeError):
    """The name is already bound by another server, or nothing listens on it."""


class AccessDenied(NamedPipeError):
    """The OS security policy refused the connection."""


class ConnectionClosed(NamedPipeError):
    """The peer closed the pipe in the middle of a read or write."""


class DecodeError(NamedPipeError):
    """A received line is not a valid codec token."""


class SerializationError(NamedPipeError):
    """A value cannot be expressed as JSON."""


class AlreadyClosed(NamedPipeError):
    """The session or listener has been closed (or was never established)."""
