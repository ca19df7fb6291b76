"""
A Session is one established pipe connection.

Messages travel one per line, each line being a codec token (see
codec.py). Writes are flushed immediately, there is no acknowledgement
from the peer and no retry.

A Session may be used by one sending thread and one receiving thread at
the same time. Two threads sending (or two threads receiving) on the same
session need their own locking. ``close`` may be called from any thread,
it wakes up a blocked ``receive``.
"""

import logging
import threading

from . import codec
from .errors import AlreadyClosed, ConnectionClosed

logger = logging.getLogger(__name__)

LINE_TERMINATOR = b'\n'


class Session(object):

    def __init__(self, name, transport):
        self._name = name
        self._transport = transport
        self._reader = transport.makefile('rb')
        self._writer = transport.makefile('wb')
        self._closed = False
        self._close_lock = threading.Lock()

    def __repr__(self):
        return '<Session {!r}{}>'.format(self._name, ' closed' if self._closed else '')

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def name(self):
        return self._name

    @property
    def closed(self):
        return self._closed

    def _check_open(self):
        if self._closed:
            raise AlreadyClosed('session {} is closed'.format(self._name))

    def _stream_error(self, e):
        if self._closed:
            return AlreadyClosed('session {} was closed'.format(self._name))
        return ConnectionClosed('pipe {} closed by peer: {}'.format(self._name, e))

    def send(self, value):
        """Encode ``value`` and write it as one line."""
        self._check_open()
        line = codec.encode(value).encode('ascii') + LINE_TERMINATOR
        try:
            self._writer.write(line)
            self._writer.flush()
        except (OSError, ValueError) as e:
            raise self._stream_error(e) from e
        logger.debug('Sent %d bytes on %s', len(line), self._name)

    def receive(self):
        """
        Block until one full line arrives and return the decoded value.

        Raises ConnectionClosed when the peer hangs up first, and DecodeError
        when the line is not a valid token. A bad line is consumed, the
        session stays usable.
        """
        self._check_open()
        try:
            line = self._reader.readline()
        except (OSError, ValueError) as e:
            raise self._stream_error(e) from e

        if not line.endswith(LINE_TERMINATOR):
            if self._closed:
                raise AlreadyClosed('session {} was closed'.format(self._name))
            raise ConnectionClosed('pipe {} closed by peer'.format(self._name))

        logger.debug('Received %d bytes on %s', len(line), self._name)
        return codec.decode(line)

    def close(self):
        """Release the pipe. Closing twice is a no-op."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        self._transport.shutdown()
        for stream in (self._writer, self._reader):
            try:
                stream.close()
            except OSError:
                # nothing is left to flush to a peer that went away
                pass
        self._transport.close()
        logger.debug('Session %s closed', self._name)


def send(session, value):
    session.send(value)


def receive(session):
    return session.receive()


def close(session):
    session.close()
