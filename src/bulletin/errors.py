"""
Errors raised by the bulletin client and server.

Every error carries the process exit code that a command line program should
use when the error terminates it. Errors that are contained by the server
(accept and dispatch failures) still carry a code so they can be reported
uniformly, but they never end the server process.
"""


class BulletinError(Exception):
    """ Base class for all bulletin errors """

    exit_code = 1


class ResolutionError(BulletinError):
    """ Name or service lookup produced no usable candidate """

    exit_code = 1


class ConnectError(BulletinError):
    """ Every resolved candidate failed to connect """

    exit_code = 2


class SendError(BulletinError):
    """ The encoded posting could not be transmitted """

    exit_code = 3


class BindError(BulletinError):
    """ No resolved candidate could be bound """

    exit_code = 1


class ListenError(BulletinError):
    """ The bound socket could not be marked as listening """

    exit_code = 1


class AcceptTransientError(BulletinError):
    """ A single accept call failed. The accept loop continues. """


class DispatchError(BulletinError):
    """ A handler unit could not be spawned for an accepted connection """


class CodecError(BulletinError, ValueError):
    """ A byte sequence is not a well formed posting """
