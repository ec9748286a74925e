import asyncio
import logging
import socket
import unittest
import unittest.mock

from bulletin.client import PostingClient
from bulletin.codec import Posting
from bulletin.errors import ConnectError, ResolutionError, SendError
from bulletin.resolver import Candidate, Intent


CANDIDATE_A = Candidate(socket.AF_INET6, socket.SOCK_STREAM, 6, ("::1", 6543, 0, 0))
CANDIDATE_B = Candidate(socket.AF_INET, socket.SOCK_STREAM, 6, ("127.0.0.1", 6543))
CANDIDATE_C = Candidate(socket.AF_INET, socket.SOCK_STREAM, 6, ("10.0.0.1", 6543))


def create_mock_resolver(candidates):
    resolver = unittest.mock.Mock()
    resolver.resolve = unittest.mock.AsyncMock(return_value=iter(candidates))
    return resolver


class PostingClientConnectTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_connect_stops_at_first_success(self):
        """ check candidates are tried in order until one connects """
        resolver = create_mock_resolver([CANDIDATE_A, CANDIDATE_B, CANDIDATE_C])
        client = PostingClient(resolver=resolver)
        sock_b = unittest.mock.Mock()
        client._attempt = unittest.mock.AsyncMock(
            side_effect=[ConnectionRefusedError("Connection refused"), sock_b]
        )

        with self.assertLogs("bulletin.client", level=logging.ERROR) as log:
            sock, peer = await client.connect("localhost", 6543)

        self.assertIs(sock, sock_b)
        self.assertEqual(peer, ("127.0.0.1", 6543))
        self.assertEqual(
            client._attempt.await_args_list,
            [unittest.mock.call(CANDIDATE_A), unittest.mock.call(CANDIDATE_B)],
        )
        self.assertEqual(len(log.output), 1)
        self.assertIn("Connection refused", log.output[0])
        resolver.resolve.assert_awaited_once_with("localhost", 6543, Intent.Connect)

    async def test_connect_fails_when_all_candidates_fail(self):
        resolver = create_mock_resolver([CANDIDATE_A, CANDIDATE_B, CANDIDATE_C])
        client = PostingClient(resolver=resolver)
        client._attempt = unittest.mock.AsyncMock(
            side_effect=ConnectionRefusedError("Connection refused")
        )

        with self.assertLogs("bulletin.client", level=logging.ERROR) as log:
            with self.assertRaises(ConnectError):
                await client.connect("localhost", 6543)

        self.assertEqual(
            client._attempt.await_args_list,
            [
                unittest.mock.call(CANDIDATE_A),
                unittest.mock.call(CANDIDATE_B),
                unittest.mock.call(CANDIDATE_C),
            ],
        )
        self.assertEqual(len(log.output), 3)

    async def test_connect_propagates_resolution_error(self):
        resolver = unittest.mock.Mock()
        resolver.resolve = unittest.mock.AsyncMock(side_effect=ResolutionError("boom"))
        client = PostingClient(resolver=resolver)

        with self.assertRaises(ResolutionError):
            await client.connect("nosuchhost.invalid", 6543)

    async def test_attempt_closes_socket_on_failure(self):
        """ check a failed connect leaves no socket open """
        loop = unittest.mock.Mock()
        loop.sock_connect = unittest.mock.AsyncMock(
            side_effect=ConnectionRefusedError("Connection refused")
        )
        client = PostingClient(resolver=unittest.mock.Mock(), loop=loop)

        sock = unittest.mock.Mock()
        with unittest.mock.patch("bulletin.client.socket.socket", return_value=sock):
            with self.assertRaises(ConnectionRefusedError):
                await client._attempt(CANDIDATE_B)

        loop.sock_connect.assert_awaited_once_with(sock, CANDIDATE_B.sockaddr)
        self.assertTrue(sock.close.called)

    async def test_connect_to_closed_port(self):
        """ check a real connection refusal is reported as a ConnectError """
        # Find a port that nothing is listening on
        spare = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        spare.bind(("127.0.0.1", 0))
        port = spare.getsockname()[1]
        spare.close()

        client = PostingClient()
        with self.assertLogs("bulletin.client", level=logging.ERROR):
            with self.assertRaises(ConnectError):
                await client.connect("127.0.0.1", port)


class PostingClientPostTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_post(self):
        """ check a posting arrives at the server in wire format """
        received = asyncio.get_running_loop().create_future()

        async def on_connection(reader, writer):
            received.set_result(await reader.read())
            writer.close()

        listener = await asyncio.start_server(
            on_connection, host="127.0.0.1", port=0, family=socket.AF_INET
        )
        _host, port = listener.sockets[0].getsockname()

        try:
            client = PostingClient()
            peer = await client.post(
                "127.0.0.1", port, Posting("alice", "hello", "http://x/y.png")
            )
            data = await asyncio.wait_for(received, timeout=5.0)
        finally:
            listener.close()
            await listener.wait_closed()

        self.assertEqual(peer, ("127.0.0.1", port))
        self.assertEqual(data, b"user=alice\nimg=http://x/y.png\nhello\n:\n:\n")

    async def test_send_failure_raises_send_error(self):
        loop = unittest.mock.Mock()
        loop.sock_sendall = unittest.mock.AsyncMock(
            side_effect=BrokenPipeError("Broken pipe")
        )
        client = PostingClient(resolver=unittest.mock.Mock(), loop=loop)

        with self.assertRaises(SendError) as cm:
            await client.send(unittest.mock.Mock(), b"user=alice\nhello\n:\n:\n")
        self.assertIn("Broken pipe", str(cm.exception))

    async def test_post_closes_socket_after_send_failure(self):
        client = PostingClient(resolver=unittest.mock.Mock())
        sock = unittest.mock.Mock()
        client.connect = unittest.mock.AsyncMock(return_value=(sock, ("127.0.0.1", 1)))
        client.send = unittest.mock.AsyncMock(side_effect=SendError("boom"))

        with self.assertRaises(SendError):
            await client.post("127.0.0.1", 1, Posting("alice", "hello"))
        self.assertTrue(sock.close.called)


if __name__ == "__main__":
    unittest.main()
