import os
import socket
import sys
import tempfile

# Root of the host pipe namespace. Windows has a real one; on posix the
# endpoints are unix sockets collected in a directory.
WINDOWS_PIPE_NAMESPACE = '\\\\.\\pipe\\'

if sys.platform == 'win32':
    PIPE_NAMESPACE = WINDOWS_PIPE_NAMESPACE
else:
    PIPE_NAMESPACE = os.path.join(tempfile.gettempdir(), 'pynpipe')

LOCAL_HOST = '.'

_LOCAL_HOST_ALIASES = ('.', 'local', 'localhost', '127.0.0.1', '::1')


def validate_pipe_name(name):
    if not isinstance(name, str) or not name:
        raise ValueError('pipe name must be a non-empty string')
    if '/' in name or '\\' in name or '\0' in name:
        raise ValueError('invalid pipe name {!r}'.format(name))
    if name.startswith('.'):
        raise ValueError('pipe name must not start with a dot: {!r}'.format(name))
    return name


def is_local_host(host):
    if host is None:
        return True
    host = host.lower()
    return host in _LOCAL_HOST_ALIASES or host == socket.gethostname().lower()


def make_socket_closeonexec(sock):
    # child processes must not hold on to pipe endpoints
    sock.set_inheritable(False)
