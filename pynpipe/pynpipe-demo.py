#!/usr/bin/env python
"""
pynpipe demo.

    pynpipe-demo.py serve NAME            echo every message back
    pynpipe-demo.py send NAME JSON [HOST]
    pynpipe-demo.py list
"""

import logging
import sys

import simplejson as json

from pynpipe import ConnectionClosed, PipeServer, dial, list_pipes


def echo(session):
    while True:
        try:
            value = session.receive()
        except ConnectionClosed:
            return
        session.send(value)


def serve(name):
    server = PipeServer(name, echo)
    server.start()
    print('echo server listening on', name)
    try:
        server.thread.join()
    except KeyboardInterrupt:
        server.stop()


def send(name, payload, host=None):
    with dial(name, host) as session:
        session.send(json.loads(payload))
        print('reply from server:', json.dumps(session.receive()))


def show_pipes():
    for entry in list_pipes():
        print(entry.name, entry.path)


def setup_logging(level=logging.INFO):
    kw = {
        'format': '[%(asctime)s][%(module)s]: %(message)s',
        'datefmt': '%m/%d/%Y %H:%M:%S',
        'level': level,
        'stream': sys.stdout
    }

    logging.basicConfig(**kw)


def main(argv):
    setup_logging()
    if len(argv) == 2 and argv[0] == 'serve':
        serve(argv[1])
    elif len(argv) in (3, 4) and argv[0] == 'send':
        send(*argv[1:])
    elif argv == ['list']:
        show_pipes()
    else:
        print(__doc__)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
