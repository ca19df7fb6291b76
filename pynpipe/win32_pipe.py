"""
Named pipes on windows, driven through pywin32.

All handles are opened for overlapped I/O so that a read blocked in one
thread neither serializes writes from another thread nor survives a
shutdown() of the transport.
"""

import io
import logging
import os
import threading

import pywintypes
import win32con
import win32event
import win32file
import win32pipe

from .errors import AccessDenied, AlreadyClosed, EndpointUnavailable
from .transport import PipeEndpoint, PipeTransport
from .utils import LOCAL_HOST, WINDOWS_PIPE_NAMESPACE, is_local_host

logger = logging.getLogger(__name__)

PIPE_BUFFER_SIZE = 64 * 1024

FILE_FLAG_FIRST_PIPE_INSTANCE = 0x00080000
SECURITY_SQOS_PRESENT = 0x00100000
SECURITY_DELEGATION = 0x00030000

ERROR_FILE_NOT_FOUND = 2
ERROR_ACCESS_DENIED = 5
ERROR_BAD_NETPATH = 53
ERROR_BAD_NET_NAME = 67
ERROR_BROKEN_PIPE = 109
ERROR_PIPE_BUSY = 231
ERROR_NO_DATA = 232
ERROR_PIPE_NOT_CONNECTED = 233
ERROR_PIPE_CONNECTED = 535
ERROR_OPERATION_ABORTED = 995
ERROR_IO_PENDING = 997

_DISCONNECTED = (ERROR_BROKEN_PIPE, ERROR_NO_DATA, ERROR_PIPE_NOT_CONNECTED,
                 ERROR_OPERATION_ABORTED)
_UNREACHABLE = (ERROR_FILE_NOT_FOUND, ERROR_BAD_NETPATH, ERROR_BAD_NET_NAME,
                ERROR_PIPE_BUSY)


def entry_path(name, root=None):
    return WINDOWS_PIPE_NAMESPACE + name


def remote_path(name, host):
    if is_local_host(host):
        host = LOCAL_HOST
    return '\\\\{}\\pipe\\{}'.format(host, name)


def _new_event():
    return win32event.CreateEvent(None, True, False, None)


def _overlapped():
    ov = pywintypes.OVERLAPPED()
    ov.hEvent = _new_event()
    return ov


def _wait(handle, ov, cancel_event):
    """
    Wait for an overlapped operation. Returns the transferred byte count,
    or None when ``cancel_event`` fired first (the operation is cancelled).
    """
    rc = win32event.WaitForMultipleObjects(
        [ov.hEvent, cancel_event], False, win32event.INFINITE)
    if rc == win32event.WAIT_OBJECT_0 + 1:
        win32file.CancelIo(handle)
        try:
            win32file.GetOverlappedResult(handle, ov, True)
        except pywintypes.error:
            # expected: ERROR_OPERATION_ABORTED
            pass
        return None
    return win32file.GetOverlappedResult(handle, ov, True)


class _PipeHandleIO(io.RawIOBase):

    def __init__(self, handle, shutdown_event):
        io.RawIOBase.__init__(self)
        self.handle = handle
        self.shutdown_event = shutdown_event

    def readable(self):
        return True

    def writable(self):
        return True

    def readinto(self, b):
        ov = _overlapped()
        buf = win32file.AllocateReadBuffer(len(b))
        try:
            win32file.ReadFile(self.handle, buf, ov)
            n = _wait(self.handle, ov, self.shutdown_event)
        except pywintypes.error as e:
            if e.winerror in _DISCONNECTED:
                return 0
            raise OSError(e.winerror, e.strerror) from e
        if n is None:
            return 0
        b[:n] = buf[:n]
        return n

    def write(self, b):
        ov = _overlapped()
        try:
            win32file.WriteFile(self.handle, bytes(b), ov)
            n = _wait(self.handle, ov, self.shutdown_event)
        except pywintypes.error as e:
            if e.winerror in _DISCONNECTED:
                raise BrokenPipeError(e.winerror, e.strerror) from e
            raise OSError(e.winerror, e.strerror) from e
        if n is None:
            raise BrokenPipeError('pipe was shut down')
        return n

    def close(self):
        if not self.closed:
            self.handle.Close()
        io.RawIOBase.close(self)


class Win32PipeTransport(PipeTransport):

    def __init__(self, handle):
        self.shutdown_event = _new_event()
        self.raw = _PipeHandleIO(handle, self.shutdown_event)

    def makefile(self, mode):
        if mode == 'rb':
            return io.BufferedReader(self.raw, PIPE_BUFFER_SIZE)
        if mode == 'wb':
            return io.BufferedWriter(self.raw, PIPE_BUFFER_SIZE)
        raise ValueError('unsupported mode {!r}'.format(mode))

    def shutdown(self):
        win32event.SetEvent(self.shutdown_event)

    def close(self):
        self.raw.close()


class Win32PipeEndpoint(PipeEndpoint):

    def __init__(self, name):
        PipeEndpoint.__init__(self, name, entry_path(name))
        self.handle = None
        self.accepting = False
        self.closed = False
        self.cancel_event = _new_event()
        self.lock = threading.Lock()

    def bind(self):
        try:
            handle = win32pipe.CreateNamedPipe(
                self.path,
                win32pipe.PIPE_ACCESS_DUPLEX | win32file.FILE_FLAG_OVERLAPPED |
                FILE_FLAG_FIRST_PIPE_INSTANCE,
                win32pipe.PIPE_TYPE_BYTE | win32pipe.PIPE_READMODE_BYTE |
                win32pipe.PIPE_WAIT,
                1, PIPE_BUFFER_SIZE, PIPE_BUFFER_SIZE, 0, None)
        except pywintypes.error as e:
            # first-instance violations come back as access denied
            if e.winerror in (ERROR_ACCESS_DENIED, ERROR_PIPE_BUSY):
                raise EndpointUnavailable(
                    'pipe {} is already in use'.format(self.name)) from e
            raise OSError(e.winerror, e.strerror) from e
        with self.lock:
            self.handle = handle

    def accept(self):
        with self.lock:
            if self.closed or self.handle is None:
                raise AlreadyClosed('listener for pipe {} is closed'.format(self.name))
            self.accepting = True
            handle = self.handle

        ov = _overlapped()
        try:
            rc = win32pipe.ConnectNamedPipe(handle, ov)
            if rc == ERROR_IO_PENDING:
                if _wait(handle, ov, self.cancel_event) is None:
                    with self.lock:
                        self.accepting = False
                        self._release()
                    raise AlreadyClosed(
                        'listener for pipe {} was closed'.format(self.name))
        except pywintypes.error as e:
            # a client that connected between create and connect is fine
            if e.winerror != ERROR_PIPE_CONNECTED:
                with self.lock:
                    self.accepting = False
                    self._release()
                raise OSError(e.winerror, e.strerror) from e

        with self.lock:
            self.accepting = False
            if self.closed:
                self._release()
                raise AlreadyClosed('listener for pipe {} was closed'.format(self.name))
            self.handle = None
        return Win32PipeTransport(handle)

    def close(self):
        with self.lock:
            if self.closed:
                return
            self.closed = True
            if not self.accepting:
                self._release()
                return
        win32event.SetEvent(self.cancel_event)

    def _release(self):
        if self.handle is not None:
            self.handle.Close()
            self.handle = None


def make_endpoint(name, root=None):
    return Win32PipeEndpoint(name)


def connect(name, host, root=None):
    path = remote_path(name, host)
    try:
        handle = win32file.CreateFile(
            path,
            win32con.GENERIC_READ | win32con.GENERIC_WRITE,
            0, None, win32con.OPEN_EXISTING,
            win32file.FILE_FLAG_OVERLAPPED | SECURITY_SQOS_PRESENT |
            SECURITY_DELEGATION,
            None)
    except pywintypes.error as e:
        if e.winerror == ERROR_ACCESS_DENIED:
            raise AccessDenied('access to pipe {} denied'.format(path)) from e
        if e.winerror in _UNREACHABLE:
            raise EndpointUnavailable('no pipe named {} is listening'.format(path)) from e
        raise OSError(e.winerror, e.strerror) from e
    return Win32PipeTransport(handle)


def list_names(root=None):
    return sorted(os.listdir(WINDOWS_PIPE_NAMESPACE))
