import asyncio
import enum
import logging
import socket

from asyncio import AbstractEventLoop
from bulletin.errors import ResolutionError
from collections import namedtuple
from typing import Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class Intent(enum.Enum):
    Connect = 0
    Bind = 1


# One resolved endpoint. The fields mirror the tuples returned by
# socket.getaddrinfo, minus the canonical name.
Candidate = namedtuple("Candidate", ("family", "type", "proto", "sockaddr"))


def get_host_port(sockaddr) -> Tuple[str, int]:
    """ Return a (host, port) pair for an IPv4 or IPv6 socket address.

    AF_INET6 addresses are four-tuples (host, port, flowinfo, scopeid) which
    are reduced to the two-tuple form used for logging and display.
    """
    if len(sockaddr) == 4:
        host, port, _flowinfo, _scopeid = sockaddr
        return (host, port)
    return sockaddr


class AddressResolver(object):
    """
    Turns a host and port into the ordered sequence of endpoint candidates
    that a client should try to connect to, or that a server should try to
    bind to.

    Both IPv4 and IPv6 candidates are produced when available. The order of
    the candidates is the order the system resolver prefers and callers are
    expected to try them in that order.
    """

    def __init__(self, loop: AbstractEventLoop = None):
        self._loop = loop

    @property
    def loop(self) -> AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    async def resolve(
        self,
        host: Optional[str],
        port: Union[str, int],
        intent: Intent = Intent.Connect,
    ) -> Iterator[Candidate]:
        """ Resolve a host and port into endpoint candidates.

        :param host: The host name or address literal to resolve. Ignored for
          the Bind intent, where the wildcard address is always used.

        :param port: The service name or port number.

        :param intent: Whether the candidates will be used to connect or to
          bind.

        :returns: an iterator over the candidates. The iterator is single use.

        :raises ResolutionError: if the lookup fails or yields no candidates.
        """
        flags = 0
        if intent is Intent.Bind:
            host = None
            flags = socket.AI_PASSIVE

        logger.debug(f"Resolving {host}:{port} for {intent.name}")

        try:
            infos = await self.loop.getaddrinfo(
                host,
                port,
                family=socket.AF_UNSPEC,
                type=socket.SOCK_STREAM,
                flags=flags,
            )
        except (socket.gaierror, UnicodeError) as exc:
            raise ResolutionError(
                f"getaddrinfo for {host}:{port} failed: {exc}"
            ) from None

        if not infos:
            raise ResolutionError(f"getaddrinfo for {host}:{port} returned nothing")

        candidates = [
            Candidate(family, type_, proto, sockaddr)
            for family, type_, proto, _canonname, sockaddr in infos
        ]
        logger.debug(
            f"Resolved {host}:{port} to {[get_host_port(c.sockaddr) for c in candidates]}"
        )
        return iter(candidates)
