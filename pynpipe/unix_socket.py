"""
Named pipes on linux/mac, implemented with unix domain sockets.

Every pipe is a socket file ``<root>/<name>``. A server holds the name with
an exclusive flock on ``<root>/.<name>.lock`` from bind() until its session
is closed, so two live servers can never share a name, while a socket file
left behind by a crashed server is simply replaced.

A listener accepts one client only. The accepting side writes a single
ACCEPTED byte before the session starts, and connect() waits for it, so a
client queued behind the first one fails with EndpointUnavailable instead
of getting a dead session.
"""

import errno
import fcntl
import logging
import os
import socket
import stat
import threading

from .errors import AccessDenied, AlreadyClosed, EndpointUnavailable
from .transport import PipeEndpoint, PipeTransport
from .utils import is_local_host, make_socket_closeonexec

logger = logging.getLogger(__name__)

# sent by the server once it has accepted, a queued client that never gets
# it was left behind by a spent listener
ACCEPTED = b'\x06'


def entry_path(name, root):
    return os.path.join(root, name)


def _lock_path(name, root):
    return os.path.join(root, '.{}.lock'.format(name))


def _raise_for_oserror(e, name):
    if isinstance(e, PermissionError):
        raise AccessDenied('access to pipe {} denied'.format(name)) from e
    if isinstance(e, (FileNotFoundError, ConnectionRefusedError)):
        raise EndpointUnavailable('no pipe named {} is listening'.format(name)) from e
    if e.errno == errno.EADDRINUSE:
        raise EndpointUnavailable('pipe {} is already in use'.format(name)) from e
    raise e


class _NameHold(object):
    """Exclusive ownership of a pipe name, released together with the socket file."""

    def __init__(self, name, root):
        self.name = name
        self.path = entry_path(name, root)
        self.lock_path = _lock_path(name, root)
        self.lock_fd = None
        self.bound = False

    def acquire(self):
        fd = os.open(self.lock_path, os.O_RDONLY | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise EndpointUnavailable('pipe {} is already in use'.format(self.name))
        except OSError:
            os.close(fd)
            raise
        self.lock_fd = fd

    def release(self):
        if self.lock_fd is None:
            return
        if self.bound:
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass
            self.bound = False
        # the lock file stays, unlinking it would race with the next owner
        os.close(self.lock_fd)
        self.lock_fd = None


class UnixSocketTransport(PipeTransport):

    def __init__(self, sock, hold=None):
        self.sock = sock
        self.hold = hold

    def makefile(self, mode):
        return self.sock.makefile(mode)

    def shutdown(self):
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # peer is already gone
            pass

    def close(self):
        self.sock.close()
        if self.hold is not None:
            self.hold.release()
            self.hold = None


class UnixSocketEndpoint(PipeEndpoint):

    def __init__(self, name, root):
        PipeEndpoint.__init__(self, name, entry_path(name, root))
        self.root = root
        self.sock = None
        self.hold = None
        self.accepting = False
        self.closed = False
        self.lock = threading.Lock()

    def bind(self):
        os.makedirs(self.root, exist_ok=True)
        hold = _NameHold(self.name, self.root)
        try:
            hold.acquire()
        except OSError as e:
            _raise_for_oserror(e, self.name)

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM, 0)
        make_socket_closeonexec(sock)
        try:
            if os.path.lexists(self.path):
                if not stat.S_ISSOCK(os.lstat(self.path).st_mode):
                    raise EndpointUnavailable(
                        '{} exists and is not a pipe'.format(self.path))
                logger.info('Removing stale pipe socket %s', self.path)
                os.unlink(self.path)
            sock.bind(self.path)
            hold.bound = True
            sock.listen(1)
        except EndpointUnavailable:
            sock.close()
            hold.release()
            raise
        except OSError as e:
            sock.close()
            hold.release()
            _raise_for_oserror(e, self.name)

        with self.lock:
            self.sock = sock
            self.hold = hold

    def accept(self):
        with self.lock:
            if self.closed or self.sock is None:
                raise AlreadyClosed('listener for pipe {} is closed'.format(self.name))
            self.accepting = True
            sock = self.sock

        try:
            conn, _ = sock.accept()
        except OSError as e:
            with self.lock:
                self.accepting = False
                self._release()
                if self.closed:
                    raise AlreadyClosed(
                        'listener for pipe {} was closed'.format(self.name)) from e
            raise

        with self.lock:
            self.accepting = False
            if self.closed:
                conn.close()
                self._release()
                raise AlreadyClosed('listener for pipe {} was closed'.format(self.name))
            # the listener is spent; the name now belongs to the session
            hold, self.hold = self.hold, None
            self._release()

        make_socket_closeonexec(conn)
        try:
            conn.sendall(ACCEPTED)
        except OSError:
            # the client gave up already, the session will see the hangup
            logger.debug('Client of %s left before the handshake', self.name)
        return UnixSocketTransport(conn, hold)

    def close(self):
        with self.lock:
            if self.closed:
                return
            self.closed = True
            if not self.accepting:
                self._release()
                return
        self._wake_accept()

    def _wake_accept(self):
        # a blocked accept() only returns when somebody connects
        waker = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM, 0)
        try:
            waker.connect(self.path)
        except OSError:
            logger.debug('Could not wake listener on %s', self.path, exc_info=True)
        finally:
            waker.close()

    def _release(self):
        if self.sock is not None:
            self.sock.close()
            self.sock = None
        if self.hold is not None:
            self.hold.release()
            self.hold = None


def make_endpoint(name, root):
    return UnixSocketEndpoint(name, root)


def connect(name, host, root):
    if not is_local_host(host):
        raise EndpointUnavailable(
            'unix socket pipes are local only, cannot reach {} on {}'.format(name, host))

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM, 0)
    make_socket_closeonexec(sock)
    try:
        sock.connect(entry_path(name, root))
        ack = sock.recv(len(ACCEPTED))
    except (ConnectionResetError, BrokenPipeError) as e:
        sock.close()
        raise EndpointUnavailable(
            'pipe {} closed before accepting the connection'.format(name)) from e
    except OSError as e:
        sock.close()
        _raise_for_oserror(e, name)
    if ack != ACCEPTED:
        sock.close()
        raise EndpointUnavailable(
            'pipe {} closed before accepting the connection'.format(name))
    return UnixSocketTransport(sock)


def list_names(root):
    try:
        entries = os.scandir(root)
    except FileNotFoundError:
        return []

    names = []
    with entries:
        for entry in entries:
            if entry.name.startswith('.'):
                continue
            try:
                mode = entry.stat(follow_symlinks=False).st_mode
            except FileNotFoundError:
                # went away while we were listing
                continue
            if stat.S_ISSOCK(mode):
                names.append(entry.name)
    return sorted(names)
