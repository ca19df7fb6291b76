class PipeTransport(object):
    """
    A connected, full-duplex byte stream to the peer.

    A transport is responsible for handing out binary file objects for
    reading and writing, and for releasing the OS resources behind them.
    Framing is the session's business, not the transport's.
    """
    def makefile(self, mode):
        """Return a buffered binary file object, ``mode`` is 'rb' or 'wb'."""
        raise NotImplementedError

    def shutdown(self):
        """Wake up any reader blocked in another thread."""
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


class PipeEndpoint(object):
    """
    The server side of a named pipe before a peer has connected.
    """
    def __init__(self, name, path):
        self.name = name
        self.path = path

    def bind(self):
        """Create the endpoint so that clients can find it."""
        raise NotImplementedError

    def accept(self):
        """Block until one client connects, return its PipeTransport."""
        raise NotImplementedError

    def close(self):
        """Release the endpoint. May be called from another thread."""
        raise NotImplementedError
