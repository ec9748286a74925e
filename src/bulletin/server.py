import asyncio
import logging
import socket

from asyncio import AbstractEventLoop
from bulletin.errors import (
    AcceptTransientError,
    BindError,
    DispatchError,
    ListenError,
)
from bulletin.reaper import HandlerReaper
from bulletin.resolver import AddressResolver, Candidate, Intent, get_host_port
from typing import AsyncIterator, Iterator, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


# How many pending connections the listening socket will queue
BACKLOG = 10

# The handler executable launched for each connection unless told otherwise
DEFAULT_HANDLER_COMMAND = ("simple_message_server_logic",)


class PostingServer(object):
    """
    A server accepts connections from bulletin board clients and hands each
    one to a separate handler process.

    The handler process sees the connection as its own standard input and
    standard output and inherits the server's standard error. The server
    closes its own copy of the connection as soon as the handler has been
    spawned, so the handler holds the only reference. The server never reads
    or writes the connection itself.

    Finished handler processes are reclaimed by a
    :class:`bulletin.reaper.HandlerReaper` which runs independently of the
    accept loop.
    """

    def __init__(
        self,
        handler_command: Sequence[str] = DEFAULT_HANDLER_COMMAND,
        on_started=None,
        on_stopped=None,
        on_connection=None,
        resolver: AddressResolver = None,
        loop: AbstractEventLoop = None,
    ):
        """
        :param handler_command: The program, and any arguments, launched for
          each accepted connection.

        :param on_started: A callback that will be called when the server is
          listening for connections.

        :param on_stopped: A callback that will be called when the server has
          been stopped.

        :param on_connection: A callback that will be called with the peer's
          (host, port) each time a connection is accepted, before it is handed
          to a handler.

        :param resolver: An optional resolver used to look up the addresses
          to bind to. Defaults to an AddressResolver.

        :param loop: An optional event loop. Defaults to the running loop.
        """
        if not handler_command:
            raise ValueError("handler_command must name a program to run")

        self._loop = loop
        self.handler_command = tuple(handler_command)
        self.resolver = resolver or AddressResolver(loop=loop)
        self.reaper = HandlerReaper()
        self._on_started_handler = on_started
        self._on_stopped_handler = on_stopped
        self._on_connection_handler = on_connection

        self._sock = None  # type: Optional[socket.socket]
        self._accept_task = None  # type: Optional[asyncio.Task]
        self._running = False

    @property
    def loop(self) -> AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    @property
    def running(self) -> bool:
        """ Return the running state of the server """
        return self._running

    @property
    def bindings(self) -> Sequence[Tuple[str, int]]:
        """ Return the server's bound addresses """
        if self._sock is None:
            return []
        return [get_host_port(self._sock.getsockname())]

    async def start(self, port: Union[str, int]) -> None:
        """ Bind, listen and begin accepting connections.

        :param port: The port or service name to listen on. The wildcard
          address is always used.

        :raises ResolutionError: if the port can not be resolved.

        :raises BindError: if no candidate address could be bound.

        :raises ListenError: if the bound socket could not listen.
        """
        if self.running:
            return

        logger.debug(f"Starting server on port {port}")

        candidates = await self.resolver.resolve(None, port, Intent.Bind)
        sock = self._bind(candidates)
        self._listen(sock)

        self._sock = sock
        self._running = True
        self.reaper.start()
        self._accept_task = self.loop.create_task(self._accept_loop())

        # Don't let poor user code break the server
        try:
            if self._on_started_handler:
                self._on_started_handler(self)
        except Exception:
            logger.exception("Error in on_started callback method")

    async def stop(self) -> None:
        """ Stop accepting connections and release the listening socket.

        Handler processes that are still running are left to finish on their
        own.
        """
        if not self.running:
            return

        logger.debug("Stopping server")

        if self._accept_task:
            self._accept_task.cancel()
            try:
                await self._accept_task
            except asyncio.CancelledError:
                pass
        self._accept_task = None

        self._sock.close()
        self._sock = None

        await self.reaper.stop()
        self._running = False

        # Don't let poor user code break the server
        try:
            if self._on_stopped_handler:
                self._on_stopped_handler(self)
        except Exception:
            logger.exception("Error in on_stopped callback method")

    def _bind(self, candidates: Iterator[Candidate]) -> socket.socket:
        """ Return a socket bound to the first candidate that can be bound """
        for candidate in candidates:
            addr = get_host_port(candidate.sockaddr)
            try:
                sock = socket.socket(candidate.family, candidate.type, candidate.proto)
            except OSError as exc:
                logger.error(f"Socket creation for {addr} failed: {exc}")
                continue
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(candidate.sockaddr)
            except OSError as exc:
                sock.close()
                logger.error(f"Bind to {addr} failed: {exc}")
                continue
            logger.debug(f"Bound listener to {addr}")
            return sock

        raise BindError("failed to bind")

    def _listen(self, sock: socket.socket) -> None:
        try:
            sock.listen(BACKLOG)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise ListenError(f"listen failed: {exc}") from None

    async def _accept(self) -> Tuple[socket.socket, Tuple[str, int]]:
        """ Wait for the next inbound connection.

        :raises AcceptTransientError: if this accept call failed.
        """
        try:
            conn, addr = await self.loop.sock_accept(self._sock)
        except OSError as exc:
            raise AcceptTransientError(f"accept failed: {exc}") from None
        return conn, get_host_port(addr)

    async def _connections(self) -> AsyncIterator[Tuple[socket.socket, Tuple[str, int]]]:
        """ Yield accepted connections forever.

        A failed accept is logged and never ends the iteration.
        """
        while True:
            try:
                conn, peer = await self._accept()
            except AcceptTransientError as exc:
                logger.error(str(exc))
                continue
            yield conn, peer

    async def _accept_loop(self):
        async for conn, peer in self._connections():
            logger.info(f"Got connection from {peer[0]}")

            # Don't let poor user code break the server
            try:
                if self._on_connection_handler:
                    self._on_connection_handler(self, peer)
            except Exception:
                logger.exception("Error in on_connection callback method")

            await self._dispatch(conn, peer)

    async def _dispatch(self, conn: socket.socket, peer: Tuple[str, int]) -> None:
        """ Hand a connection to a newly spawned handler process.

        The connection is closed in this process whether or not the handler
        could be started. A failure to start the handler drops only this
        connection.
        """
        try:
            # The handler expects an ordinary blocking stream.
            conn.setblocking(True)
            unit = await asyncio.create_subprocess_exec(
                *self.handler_command, stdin=conn.fileno(), stdout=conn.fileno()
            )
        except OSError as exc:
            err = DispatchError(
                f"failed to spawn {self.handler_command[0]} for {peer}: {exc}"
            )
            logger.error(str(err))
            return
        finally:
            conn.close()

        logger.debug(f"Spawned handler pid={unit.pid} for {peer}")
        self.reaper.track(unit)
