"""
The posting codec converts a posting to and from the line based wire format
that a client sends to the bulletin board server.

.. code-block:: console

    user=<user>\\n
    img=<image URL>\\n      (omitted when there is no image URL)
    <message>\\n
    :\\n
    :\\n

There is no length prefix. The end of a posting is marked by the two line
sentinel ``:\\n:\\n``. Field values are passed through verbatim, so a value
that itself contains the sentinel makes the framing ambiguous.
"""

import logging

from bulletin.errors import CodecError
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)


ENCODING = "utf-8"

# Fields taken from the command line may hold bytes that are not valid UTF-8.
# They are sent exactly as they were given.
ENCODE_ERRORS = "surrogateescape"

USER_PREFIX = b"user="
IMAGE_PREFIX = b"img="
LINE_END = b"\n"
SENTINEL = b":\n:\n"


class Posting(NamedTuple):
    user: str
    message: str
    image_url: Optional[str] = None

    @classmethod
    def create(cls, user: str, message: str, image_url: str = None) -> "Posting":
        """ Return a new posting after checking the user name is present """
        if not user:
            raise ValueError("user must be a non-empty string")
        return cls(user, message, image_url)


def encode(posting: Posting) -> bytes:
    """ Return the wire representation of a posting """
    buf = bytearray()
    buf.extend(USER_PREFIX)
    buf.extend(posting.user.encode(ENCODING, ENCODE_ERRORS))
    buf.extend(LINE_END)
    if posting.image_url is not None:
        buf.extend(IMAGE_PREFIX)
        buf.extend(posting.image_url.encode(ENCODING, ENCODE_ERRORS))
        buf.extend(LINE_END)
    buf.extend(posting.message.encode(ENCODING, ENCODE_ERRORS))
    buf.extend(LINE_END)
    buf.extend(SENTINEL)
    return bytes(buf)


def decode(data: bytes) -> Posting:
    """ Extract a posting from a complete, sentinel terminated byte sequence.

    Anything following the first sentinel is ignored. The message body is
    everything between the header lines and the sentinel, so it may span
    several lines.

    The framing is ambiguous for a message containing the sentinel. For
    example a message that is exactly ":" encodes to
    ``user=a\\n:\\n:\\n:\\n`` and the first sentinel found leaves no message
    line, so that posting is rejected.

    :raises CodecError: if the data is not a well formed posting.
    """
    # The message line terminator is part of the end-of-posting marker.
    end = data.find(LINE_END + SENTINEL)
    if end == -1:
        raise CodecError("posting is not terminated by the sentinel")

    body = data[: end + len(LINE_END)]

    line, sep, body = body.partition(LINE_END)
    if not line.startswith(USER_PREFIX) or not sep:
        raise CodecError("posting does not start with a user line")
    user = line[len(USER_PREFIX) :]
    if not user:
        raise CodecError("posting has an empty user")

    image_url = None
    if body.startswith(IMAGE_PREFIX):
        line, sep, rest = body.partition(LINE_END)
        # A lone img line is the message body, not an image header.
        if rest:
            image_url = line[len(IMAGE_PREFIX) :]
            body = rest

    if not body:
        raise CodecError("posting has no message line")
    message = body[: -len(LINE_END)]

    try:
        if image_url is not None:
            image_url = image_url.decode(ENCODING)
        return Posting(user.decode(ENCODING), message.decode(ENCODING), image_url)
    except UnicodeDecodeError as exc:
        raise CodecError(f"posting is not valid {ENCODING}: {exc}") from None
