import asyncio
import inspect
import logging

from asyncio import AbstractEventLoop
from signal import SIGTERM, SIGINT
from typing import Awaitable, Optional


logger = logging.getLogger(__name__)


def run(
    *,
    finalize: Optional[Awaitable[None]] = None,
    loop: AbstractEventLoop = None,
):
    """ Run the event loop forever, until a signal or an unhandled exception
    stops it.

    SIGINT and SIGTERM stop the loop. An exception that escapes any task also
    stops the loop, so a failure in a background task such as the accept
    loop is reported straight away instead of when the process exits.

    Work is scheduled on the loop before calling this function, as the server
    does by starting itself on the loop it then passes in.

    Once the loop has stopped the optional finalize coroutine is run, any
    tasks still pending are cancelled and the loop is closed.

    :param finalize: An optional coroutine, or coroutine function taking no
      arguments, to run when shutting down. The server uses this to close its
      listening socket.

    :param loop: An optional event loop to run. If not supplied, or if the
      supplied loop is closed, a new event loop is created.
    """
    logger.debug("Application runner starting")

    if finalize:
        if not (inspect.isawaitable(finalize) or inspect.iscoroutinefunction(finalize)):
            raise Exception(
                "finalize must be a coroutine or a coroutine function "
                f"that takes no arguments, got {finalize}"
            )

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def signal_handler(loop, sig):
        logger.info(f"Caught {sig.name}, stopping.")
        loop.call_soon(loop.stop)

    loop.add_signal_handler(SIGINT, signal_handler, loop, SIGINT)
    loop.add_signal_handler(SIGTERM, signal_handler, loop, SIGTERM)

    def exception_handler(loop, context):
        logger.error(f"Caught exception: {context}")
        loop.call_soon(loop.stop)

    loop.set_exception_handler(exception_handler)

    try:
        loop.run_forever()
    finally:
        logger.debug("Application shutdown sequence starting")
        if finalize:
            if inspect.iscoroutinefunction(finalize):
                finalize = finalize()  # type: ignore
            loop.run_until_complete(finalize)

        pending_tasks = asyncio.all_tasks(loop=loop)
        if pending_tasks:
            logger.debug(f"Cancelling {len(pending_tasks)} pending tasks.")
            for task in pending_tasks:
                task.cancel()
            loop.run_until_complete(
                asyncio.gather(*pending_tasks, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        loop.remove_signal_handler(SIGINT)
        loop.remove_signal_handler(SIGTERM)

        logger.debug("Application shutdown sequence complete")

        loop.close()
        asyncio.set_event_loop(None)

        logger.debug("Application runner stopped")
