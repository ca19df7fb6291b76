"""
Connection establishment: the listening and the dialing side of a pipe.

This uses named pipes on windows and unix domain sockets on linux/mac.
Both sides end up with a Session, and the two are indistinguishable once
connected.

There are no timeouts. A pending accept() is abandoned by closing its
Listener from another thread; a pending receive() by closing the Session.
"""

import logging
import sys

from .errors import AlreadyClosed
from .session import Session
from .utils import PIPE_NAMESPACE, validate_pipe_name

if sys.platform == 'win32':
    from . import win32_pipe as _platform
else:
    from . import unix_socket as _platform

logger = logging.getLogger(__name__)


class Listener(object):
    """
    Server side of one pipe name. Accepts exactly one client, then it is
    spent; serving another client means creating a new Listener.

    The name stays taken from bind() until the accepted session (or this
    listener, if nobody connected) is closed.

    ``root`` overrides the namespace directory on linux/mac and is ignored
    on windows.
    """
    def __init__(self, name, root=None):
        self.name = validate_pipe_name(name)
        self.root = root or PIPE_NAMESPACE
        self._endpoint = _platform.make_endpoint(self.name, self.root)
        self._bound = False
        self._spent = False

    def __enter__(self):
        self.bind()
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def path(self):
        return self._endpoint.path

    def bind(self):
        if self._spent:
            raise AlreadyClosed('listener for pipe {} is closed'.format(self.name))
        if self._bound:
            return
        self._endpoint.bind()
        self._bound = True
        logger.info('Pipe %s now listening at %s', self.name, self.path)

    def accept(self):
        """Block until a client connects and return the Session."""
        if self._spent:
            raise AlreadyClosed('listener for pipe {} is closed'.format(self.name))
        self.bind()

        logger.info('Waiting for a client on %s', self.name)
        try:
            transport = self._endpoint.accept()
        finally:
            self._spent = True
        logger.info('New pipe client on %s', self.name)
        return Session(self.name, transport)

    def close(self):
        """
        Give up the endpoint. Safe to call from another thread, where it
        makes a blocked accept() raise AlreadyClosed. Does not affect a
        session that was already accepted.
        """
        self._spent = True
        self._endpoint.close()


def listen(name, root=None):
    """Create pipe ``name`` and block until one client connects."""
    with Listener(name, root) as listener:
        return listener.accept()


def dial(name, host=None, root=None):
    """
    Connect to pipe ``name`` on ``host`` (the local host by default).

    On windows the connection asks for delegation-level impersonation, the
    most the pipe API offers, so only dial servers you trust. Unix socket
    pipes cannot reach other hosts.
    """
    validate_pipe_name(name)
    transport = _platform.connect(name, host, root or PIPE_NAMESPACE)
    logger.info('Connected to pipe %s', name)
    return Session(name, transport)
