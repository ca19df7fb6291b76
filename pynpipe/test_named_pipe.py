#coding: UTF-8

import logging
import os
import shutil
import socket
import sys
import tempfile
import threading
import time
import unittest

from pynpipe import codec, registry
from pynpipe.errors import (
    AlreadyClosed, ConnectionClosed, DecodeError, EndpointUnavailable,
    SerializationError
)
from pynpipe.named_pipe import Listener, dial, listen
from pynpipe.session import Session, close, receive, send

posix_only = unittest.skipIf(sys.platform == 'win32', 'unix socket transport')


def wait_for_pipe(name, root, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if registry.test_exists(name, root):
            return True
        time.sleep(0.01)
    return False


def socket_session(name):
    """A connected Session plus the raw socket of its peer."""
    from pynpipe.unix_socket import UnixSocketTransport
    ours, theirs = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    return Session(name, UnixSocketTransport(ours)), theirs


class PipeTestCase(unittest.TestCase):

    def setUp(self):
        self.root = tempfile.mkdtemp(prefix='pynpipe-')
        # registered first, so it runs after the session cleanups
        self.addCleanup(shutil.rmtree, self.root, True)

    def session_pair(self, name):
        """Return (server_session, client_session) connected over ``name``."""
        accepted = {}
        listener = Listener(name, self.root)
        listener.bind()

        def accept():
            accepted['session'] = listener.accept()

        t = threading.Thread(target=accept)
        t.daemon = True
        t.start()
        client = dial(name, root=self.root)
        t.join(5)
        self.assertIn('session', accepted)
        server = accepted['session']
        self.addCleanup(server.close)
        self.addCleanup(client.close)
        return server, client


@posix_only
class ConnectionTest(PipeTestCase):

    def test_listen_blocks_until_dial(self):
        result = {}

        def serve():
            session = listen('ping-pipe', root=self.root)
            result['session'] = session
            session.send('ping')

        t = threading.Thread(target=serve)
        t.daemon = True
        t.start()

        self.assertTrue(wait_for_pipe('ping-pipe', self.root))
        t.join(0.2)
        self.assertTrue(t.is_alive())
        self.assertNotIn('session', result)

        with dial('ping-pipe', root=self.root) as client:
            self.assertEqual(client.receive(), 'ping')

        t.join(5)
        self.assertFalse(t.is_alive())
        result['session'].close()

    def test_messages_keep_their_order(self):
        server, client = self.session_pair('ordered')
        values = ['v1', {'v': 2}, [3, None, u'三']]
        for value in values:
            client.send(value)
        self.assertEqual([server.receive() for _ in values], values)

        server.send('reply')
        self.assertEqual(client.receive(), 'reply')

    def test_module_level_operations(self):
        server, client = self.session_pair('functions')
        send(client, {'op': 'add', 'args': [1, 2]})
        self.assertEqual(receive(server), {'op': 'add', 'args': [1, 2]})
        close(client)
        self.assertTrue(client.closed)

    def test_sessions_know_their_name(self):
        server, client = self.session_pair('named')
        self.assertEqual(server.name, 'named')
        self.assertEqual(client.name, 'named')

    def test_dial_unknown_endpoint(self):
        started = time.time()
        with self.assertRaises(EndpointUnavailable):
            dial('nonexistent-name-xyz', root=self.root)
        self.assertLess(time.time() - started, 5)

    def test_dial_remote_host_over_unix_sockets(self):
        with self.assertRaises(EndpointUnavailable):
            dial('anything', host='some-other-host', root=self.root)

    def test_name_is_taken_while_listening(self):
        with Listener('busy', self.root):
            with self.assertRaises(EndpointUnavailable):
                Listener('busy', self.root).bind()

    def test_name_is_taken_until_server_session_closes(self):
        server, client = self.session_pair('held')
        with self.assertRaises(EndpointUnavailable):
            Listener('held', self.root).bind()
        server.close()
        with Listener('held', self.root) as again:
            self.assertTrue(registry.test_exists('held', self.root))
            again.close()

    def test_spent_listener_refuses_second_accept(self):
        accepted = {}
        listener = Listener('once', self.root)
        listener.bind()

        def accept():
            accepted['session'] = listener.accept()

        t = threading.Thread(target=accept)
        t.daemon = True
        t.start()
        with dial('once', root=self.root):
            t.join(5)
            with self.assertRaises(AlreadyClosed):
                listener.accept()
        accepted['session'].close()

    def test_second_dial_to_one_listener_fails(self):
        listener = Listener('single', self.root)
        listener.bind()
        results = []

        def connect():
            try:
                results.append(dial('single', root=self.root))
            except EndpointUnavailable as e:
                results.append(e)

        threads = [threading.Thread(target=connect) for _ in range(2)]
        for t in threads:
            t.daemon = True
            t.start()
        server = listener.accept()
        self.addCleanup(server.close)
        for t in threads:
            t.join(5)

        sessions = [r for r in results if isinstance(r, Session)]
        errors = [r for r in results if isinstance(r, EndpointUnavailable)]
        for session in sessions:
            self.addCleanup(session.close)
        self.assertEqual(len(sessions), 1)
        self.assertEqual(len(errors), 1)

        sessions[0].send('only one')
        self.assertEqual(server.receive(), 'only one')

    def test_regular_file_is_never_replaced(self):
        path = os.path.join(self.root, 'notes.txt')
        with open(path, 'w') as f:
            f.write('keep me')

        with self.assertRaises(EndpointUnavailable):
            Listener('notes.txt', self.root).bind()
        with open(path) as f:
            self.assertEqual(f.read(), 'keep me')

    def test_stale_socket_file_is_replaced(self):
        path = os.path.join(self.root, 'stale')
        dead = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        dead.bind(path)
        dead.close()
        self.assertTrue(registry.test_exists('stale', self.root))
        with self.assertRaises(EndpointUnavailable):
            dial('stale', root=self.root)

        server, client = self.session_pair('stale')
        client.send('fresh')
        self.assertEqual(server.receive(), 'fresh')

    def test_close_listener_from_another_thread(self):
        errors = []
        listener = Listener('cancelled', self.root)
        listener.bind()

        def accept():
            try:
                listener.accept()
            except AlreadyClosed as e:
                errors.append(e)

        t = threading.Thread(target=accept)
        t.daemon = True
        t.start()
        t.join(0.2)
        listener.close()
        t.join(5)
        self.assertFalse(t.is_alive())
        self.assertEqual(len(errors), 1)
        self.assertFalse(registry.test_exists('cancelled', self.root))

    def test_invalid_names(self):
        for name in ['', '../escape', 'a/b', 'back\\slash', '.hidden', None]:
            with self.assertRaises(ValueError):
                Listener(name, self.root)
            with self.assertRaises(ValueError):
                dial(name, root=self.root)


@posix_only
class SessionTest(PipeTestCase):

    def test_receive_after_close(self):
        server, client = self.session_pair('closed-read')
        client.close()
        with self.assertRaises(AlreadyClosed):
            client.receive()
        with self.assertRaises(AlreadyClosed):
            client.send('late')

    def test_close_is_idempotent(self):
        server, client = self.session_pair('double-close')
        client.close()
        client.close()
        self.assertTrue(client.closed)

    def test_peer_close_ends_receive(self):
        server, client = self.session_pair('hangup')
        client.send('last words')
        client.close()
        self.assertEqual(server.receive(), 'last words')
        with self.assertRaises(ConnectionClosed):
            server.receive()

    def test_send_to_closed_peer(self):
        server, client = self.session_pair('gone')
        server.close()
        with self.assertRaises(ConnectionClosed):
            # the first write may still land in the socket buffer
            for _ in range(100):
                client.send('x' * 4096)

    def test_close_wakes_blocked_receive(self):
        server, client = self.session_pair('wake-up')
        errors = []

        def read():
            try:
                server.receive()
            except (AlreadyClosed, ConnectionClosed) as e:
                errors.append(e)

        t = threading.Thread(target=read)
        t.daemon = True
        t.start()
        t.join(0.2)
        server.close()
        t.join(5)
        self.assertFalse(t.is_alive())
        self.assertIsInstance(errors[0], AlreadyClosed)

    def test_malformed_line_is_not_fatal(self):
        session, peer = socket_session('malformed')
        self.addCleanup(peer.close)
        self.addCleanup(session.close)

        peer.sendall(b'this is not a token\n')
        peer.sendall(codec.encode({'ok': True}).encode('ascii') + b'\r\n')

        with self.assertRaises(DecodeError):
            session.receive()
        self.assertEqual(session.receive(), {'ok': True})

    def test_partial_line_then_hangup(self):
        session, peer = socket_session('partial')
        self.addCleanup(session.close)
        peer.sendall(codec.encode('cut').encode('ascii'))
        peer.close()
        with self.assertRaises(ConnectionClosed):
            session.receive()

    def test_unserializable_value_writes_nothing(self):
        session, peer = socket_session('nothing-written')
        self.addCleanup(peer.close)
        self.addCleanup(session.close)

        with self.assertRaises(SerializationError):
            session.send({'handle': peer})
        session.send('after')
        data = peer.recv(4096)
        self.assertEqual(data, codec.encode('after').encode('ascii') + b'\n')


def setup_logging(level=logging.INFO):
    kw = {
        'format': '[%(asctime)s][%(module)s]: %(message)s',
        'datefmt': '%m/%d/%Y %H:%M:%S',
        'level': level,
        'stream': sys.stdout
    }

    logging.basicConfig(**kw)


if __name__ == '__main__':
    setup_logging()
    unittest.main()
