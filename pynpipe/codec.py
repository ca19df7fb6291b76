"""
Message codec.

A message is carried on the pipe as a single line:

    base64( utf-16-le( compact json ) )

The base64 alphabet has no line terminators, so any json value survives
line framing. Only json-representable values are accepted: None, bool,
int, finite float, str, list/tuple and dict with str keys. Tuples come back
as lists. Anything else (sockets, functions, sets, bytes, cycles) is a
caller error and raises SerializationError before a single byte is written.
"""

import base64
import binascii
import math

import simplejson as json

from .errors import DecodeError, SerializationError

TEXT_ENCODING = 'utf-16-le'

_SCALARS = (str, int, float, bool, type(None))


def _check_representable(value, path, active):
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(
                'non-finite float at {}: {!r}'.format(path, value))
        return
    if isinstance(value, _SCALARS):
        return

    if not isinstance(value, (list, tuple, dict)):
        raise SerializationError(
            'cannot serialize {} at {}'.format(type(value).__name__, path))

    if id(value) in active:
        raise SerializationError('circular reference at {}'.format(path))
    active.add(id(value))
    try:
        if isinstance(value, dict):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SerializationError(
                        'non-string key {!r} at {}'.format(key, path))
                _check_representable(item, '{}[{!r}]'.format(path, key), active)
        else:
            for i, item in enumerate(value):
                _check_representable(item, '{}[{}]'.format(path, i), active)
    finally:
        active.discard(id(value))


def encode(value):
    """Return the line-safe ascii token for ``value``."""
    try:
        _check_representable(value, '$', set())
        text = json.dumps(value, separators=(',', ':'), allow_nan=False,
                          namedtuple_as_object=False)
    except RecursionError:
        raise SerializationError('value is nested too deeply')
    return base64.b64encode(text.encode(TEXT_ENCODING)).decode('ascii')


def decode(token):
    """Inverse of encode. Raises DecodeError on malformed tokens."""
    if isinstance(token, bytes):
        try:
            token = token.decode('ascii')
        except UnicodeDecodeError:
            raise DecodeError('token is not ascii')
    token = token.strip()
    if not token:
        raise DecodeError('empty token')

    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError('invalid base64 token: {}'.format(e))

    try:
        text = raw.decode(TEXT_ENCODING)
    except UnicodeDecodeError as e:
        raise DecodeError('invalid {} payload: {}'.format(TEXT_ENCODING, e))

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError('invalid json payload: {}'.format(e))
    except RecursionError:
        raise DecodeError('json payload is nested too deeply')
