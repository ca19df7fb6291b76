"""
Enumeration of the pipes currently open on this host.

Every call reads the live namespace, nothing is cached. The answer is a
snapshot: a pipe can appear or go away right after it was taken, so don't
use test_exists() to coordinate with a server.
"""

import sys
from collections import namedtuple

from .utils import PIPE_NAMESPACE

if sys.platform == 'win32':
    from . import win32_pipe as _platform
else:
    from . import unix_socket as _platform

PipeEntry = namedtuple('PipeEntry', ['name', 'path'])


def list_pipes(root=None):
    root = root or PIPE_NAMESPACE
    return [PipeEntry(name, _platform.entry_path(name, root))
            for name in _platform.list_names(root)]


def test_exists(name, root=None):
    return any(entry.name == name for entry in list_pipes(root))
