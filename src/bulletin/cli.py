"""
Command line programs for the bulletin board client and server.

.. code-block:: console

    $ bulletin-server --port 6543
    $ bulletin-client --server 127.0.0.1 --port 6543 --user alice --message hello

"""

import argparse
import asyncio
import logging
import shlex
import sys

from bulletin.client import PostingClient
from bulletin.codec import Posting
from bulletin.errors import BulletinError
from bulletin.runner import run
from bulletin.server import DEFAULT_HANDLER_COMMAND, PostingServer
from typing import List, Optional


LOG_FORMAT = "%(asctime)s.%(msecs)03.0f [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Client usage errors get their own code so they can't be confused with a
# resolution failure.
CLIENT_USAGE_EXIT_CODE = 64  # EX_USAGE
SERVER_USAGE_EXIT_CODE = 1


class ArgumentParser(argparse.ArgumentParser):
    """ An argument parser that exits with a chosen code on usage errors """

    def __init__(self, *args, usage_exit_code: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.usage_exit_code = usage_exit_code

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(self.usage_exit_code, f"{self.prog}: error: {message}\n")


def port_number(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from None
    if str(port) != value or not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    return port


def add_log_level_argument(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "error"],
        default="error",
        help="Logging level. Default is 'error'.",
    )


def configure_logging(log_level: str):
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        level=getattr(logging, log_level.upper()),
    )


def build_client_parser() -> ArgumentParser:
    parser = ArgumentParser(
        description="Post a message to a bulletin board server",
        usage_exit_code=CLIENT_USAGE_EXIT_CODE,
    )
    parser.add_argument(
        "-s",
        "--server",
        metavar="<server>",
        required=True,
        help="full qualified domain name or IP address of the server",
    )
    parser.add_argument(
        "-p",
        "--port",
        metavar="<port>",
        required=True,
        help="well-known port of the server [0..65535]",
    )
    parser.add_argument(
        "-u", "--user", metavar="<name>", required=True, help="name of the posting user"
    )
    parser.add_argument(
        "-i",
        "--image",
        metavar="<URL>",
        default=None,
        help="URL pointing to an image of the posting user",
    )
    parser.add_argument(
        "-m",
        "--message",
        metavar="<message>",
        required=True,
        help="message to be added to the bulletin board",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="verbose output"
    )
    add_log_level_argument(parser)
    return parser


def build_server_parser() -> ArgumentParser:
    parser = ArgumentParser(
        description="Accept bulletin board postings",
        usage_exit_code=SERVER_USAGE_EXIT_CODE,
    )
    parser.add_argument(
        "-p",
        "--port",
        metavar="<port>",
        type=port_number,
        required=True,
        help="The port that the server will listen on",
    )
    parser.add_argument(
        "--handler",
        metavar="<command>",
        default=" ".join(DEFAULT_HANDLER_COMMAND),
        help="The program launched to handle each connection. "
        f"Default is '{' '.join(DEFAULT_HANDLER_COMMAND)}'.",
    )
    add_log_level_argument(parser)
    return parser


def client_main(argv: Optional[List[str]] = None) -> int:
    """ Run the client and return the process exit code """
    parser = build_client_parser()
    args = parser.parse_args(argv)

    configure_logging("debug" if args.verbose else args.log_level)

    try:
        posting = Posting.create(args.user, args.message, args.image)
    except ValueError as exc:
        parser.error(str(exc))

    loop = asyncio.new_event_loop()
    try:
        host, _port = loop.run_until_complete(
            PostingClient().post(args.server, args.port, posting)
        )
    except BulletinError as exc:
        print(f"{parser.prog}: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        loop.close()

    print(f"client: connected to {host}")
    return 0


def server_main(argv: Optional[List[str]] = None) -> int:
    """ Run the server until it is signalled to stop """
    parser = build_server_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    handler_command = shlex.split(args.handler)
    if not handler_command:
        parser.error("--handler must name a program to run")

    def on_started(server: PostingServer):
        print("server: waiting for connections...", flush=True)

    def on_connection(server: PostingServer, peer):
        print(f"server: got connection from {peer[0]}", flush=True)

    server = PostingServer(
        handler_command=handler_command,
        on_started=on_started,
        on_connection=on_connection,
    )

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(server.start(args.port))
    except BulletinError as exc:
        loop.close()
        print(f"{parser.prog}: {exc}", file=sys.stderr)
        return exc.exit_code

    run(finalize=server.stop, loop=loop)
    return 0


def client():
    sys.exit(client_main())


def server():
    sys.exit(server_main())
