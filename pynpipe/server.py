"""
A basic pipe server.

A pipe name only serves one client at a time, so the server handles its
clients one after another: listen, run the handler on the session, close
it, listen again.
"""

import logging
import threading

from .errors import AlreadyClosed
from .named_pipe import Listener
from .utils import validate_pipe_name

logger = logging.getLogger(__name__)


class PipeServer(object):
    """
    Runs ``handler(session)`` for every client that dials ``name``.

    The session is closed when the handler returns. Exceptions from the
    handler are logged and the server moves on to the next client.

        server = PipeServer('jobs', handle_job)
        server.start()
        ...
        server.stop()
    """
    def __init__(self, name, handler, root=None):
        self.name = validate_pipe_name(name)
        self.root = root
        self.handler = handler
        self.listener = None
        self.session = None
        self.lock = threading.Lock()
        self.stopped = threading.Event()
        self.thread = threading.Thread(target=self.accept_loop,
                                       name='pipe-server-{}'.format(name))
        self.thread.daemon = True

    @property
    def serving(self):
        return self.thread.is_alive() and not self.stopped.is_set()

    def start(self):
        # bind before returning, so clients can dial as soon as start() is done
        self.listener = Listener(self.name, self.root)
        self.listener.bind()
        self.thread.start()
        logger.info('Server for pipe %s started', self.name)

    def stop(self, timeout=None):
        self.stopped.set()
        with self.lock:
            listener, session = self.listener, self.session
        if listener is not None:
            listener.close()
        if session is not None:
            session.close()
        if self.thread.is_alive() and threading.current_thread() is not self.thread:
            self.thread.join(timeout)
        logger.info('Server for pipe %s stopped', self.name)

    def accept_loop(self):
        while not self.stopped.is_set():
            try:
                session = self.listener.accept()
            except AlreadyClosed:
                break

            with self.lock:
                if self.stopped.is_set():
                    session.close()
                    break
                self.session = session
            with session:
                self.handle(session)
            with self.lock:
                self.session = None
                if self.stopped.is_set():
                    break
                self.listener = Listener(self.name, self.root)

            try:
                self.listener.bind()
            except AlreadyClosed:
                break
            except Exception:
                logger.exception('Failed to listen on pipe %s again', self.name)
                break

    def handle(self, session):
        try:
            self.handler(session)
        except Exception:
            logger.exception('Unhandled error in handler for pipe %s', self.name)
