from .codec import decode, encode
from .errors import (
    AccessDenied, AlreadyClosed, ConnectionClosed, DecodeError,
    EndpointUnavailable, NamedPipeError, SerializationError
)
from .named_pipe import Listener, dial, listen
from .registry import PipeEntry, list_pipes, test_exists
from .server import PipeServer
from .session import Session, close, receive, send
from .utils import LOCAL_HOST, PIPE_NAMESPACE

__version__ = '1.0.0'
