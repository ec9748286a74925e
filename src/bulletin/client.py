import asyncio
import logging
import socket

from asyncio import AbstractEventLoop
from bulletin import codec
from bulletin.errors import ConnectError, SendError
from bulletin.resolver import AddressResolver, Candidate, Intent, get_host_port
from typing import Tuple, Union

logger = logging.getLogger(__name__)


class PostingClient(object):
    """
    A client delivers a single posting to a bulletin board server.

    The server address is resolved into candidates which are tried strictly
    in order until one connects. Each failed candidate is logged and its
    socket closed before moving on to the next. There is no delay and no
    retry; once every candidate has failed the connection attempt fails.

    The client is fully sequential: resolve, connect, encode, send, close.
    None of these steps has a timeout.
    """

    def __init__(self, resolver: AddressResolver = None, loop: AbstractEventLoop = None):
        """
        :param resolver: An optional resolver used to look up the server
          address. Defaults to an AddressResolver.

        :param loop: An optional event loop. Defaults to the running loop.
        """
        self._loop = loop
        self.resolver = resolver or AddressResolver(loop=loop)

    @property
    def loop(self) -> AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    async def connect(
        self, host: str, port: Union[str, int]
    ) -> Tuple[socket.socket, Tuple[str, int]]:
        """ Connect to the first usable candidate for the server address.

        :param host: The server host name or address literal.

        :param port: The server port or service name.

        :returns: the connected socket and the (host, port) it connected to.

        :raises ResolutionError: if the address can not be resolved.

        :raises ConnectError: if no candidate could be connected to.
        """
        candidates = await self.resolver.resolve(host, port, Intent.Connect)

        attempts = 0
        for candidate in candidates:
            attempts += 1
            try:
                sock = await self._attempt(candidate)
            except OSError as exc:
                logger.error(
                    f"Connection to {get_host_port(candidate.sockaddr)} failed: {exc}"
                )
                continue
            peer = get_host_port(candidate.sockaddr)
            logger.debug(f"Connected to {peer}")
            return sock, peer

        raise ConnectError(
            f"failed to connect to {host}:{port} ({attempts} candidates tried)"
        )

    async def _attempt(self, candidate: Candidate) -> socket.socket:
        """ Open a socket for a candidate and connect it.

        The socket is closed if the connect fails so that nothing is left
        behind for the next candidate.
        """
        sock = socket.socket(candidate.family, candidate.type, candidate.proto)
        try:
            sock.setblocking(False)
            await self.loop.sock_connect(sock, candidate.sockaddr)
        except BaseException:
            sock.close()
            raise
        return sock

    async def send(self, sock: socket.socket, data: bytes) -> None:
        """ Send all of the data on a connected socket.

        :raises SendError: if the data could not be transmitted.
        """
        logger.debug(f"Sending msg with {len(data)} bytes")
        try:
            await self.loop.sock_sendall(sock, data)
        except OSError as exc:
            raise SendError(f"couldn't send data: {exc}") from None

    async def post(
        self, host: str, port: Union[str, int], posting: codec.Posting
    ) -> Tuple[str, int]:
        """ Deliver a posting to a server and disconnect.

        :returns: the (host, port) of the server the posting was sent to.
        """
        sock, peer = await self.connect(host, port)
        try:
            await self.send(sock, codec.encode(posting))
        finally:
            sock.close()
        return peer
