"""MIME text extraction.

Walks a multipart body in document order and concatenates the content of
every ``text/*`` leaf, each decoded with its own ``charset`` parameter.
Sibling parts are split on their delimiter lines directly instead of
materializing the whole tree with
:mod:`email.parser`, so the nesting depth is checked before each descent
and a pathological message fails with :class:`MalformedMimeError` rather
than exhausting the stack.
"""

from __future__ import annotations

import base64
import binascii
import email.parser
import email.policy
import email.utils
import quopri
import re
from collections.abc import Iterator
from email.message import Message
from typing import BinaryIO

from .errors import MalformedMimeError
from .models import RawMessage, header_values

DEFAULT_MAX_DEPTH = 64

# compat32 keeps header values exactly as received and never rejects them.
_HEADER_PARSER = email.parser.BytesHeaderParser(policy=email.policy.compat32)
_HEADER_END = re.compile(rb"\r?\n\r?\n")

# RFC 2045 token: any CHAR except SPACE, CTLs, or tspecials.
_TOKEN = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+"
_MEDIA_TYPE = re.compile(rf"\s*({_TOKEN})/({_TOKEN})\s*(?:;|$)")


def parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    """Split a Content-Type value into its media type and parameters.

    The media type and parameter names are lower-cased.  Raises
    :class:`MalformedMimeError` if the value does not start with a
    ``type/subtype`` pair.
    """
    match = _MEDIA_TYPE.match(value)
    if match is None:
        raise MalformedMimeError(f"unparsable media type: {value!r}")
    media_type = f"{match.group(1)}/{match.group(2)}".lower()

    holder = Message()
    holder["Content-Type"] = value
    params: dict[str, str] = {}
    for name, param in holder.get_params(failobj=[])[1:]:
        params[name.lower()] = email.utils.collapse_rfc2231_value(param)
    return media_type, params


def split_message(raw: bytes) -> tuple[Message, bytes]:
    """Split raw RFC 822 bytes into a parsed header block and the raw body.

    Only the headers are parsed; the body is returned untouched.
    """
    if raw.startswith(b"\r\n"):
        header_bytes, body = b"", raw[2:]
    elif raw.startswith(b"\n"):
        header_bytes, body = b"", raw[1:]
    else:
        match = _HEADER_END.search(raw)
        if match is None:
            header_bytes, body = raw, b""
        else:
            header_bytes, body = raw[: match.start()], raw[match.end() :]
    return _HEADER_PARSER.parsebytes(header_bytes), body


def read_message(sequence_number: int, raw: bytes) -> RawMessage:
    """Build a :class:`RawMessage` from a fetched RFC 822 message."""
    header, body = split_message(raw)
    return RawMessage(sequence_number=sequence_number, header=header, body=body)


def extract_text(
    content_type: str,
    body: bytes | BinaryIO,
    *,
    transfer_encoding: str | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
    include_single_part: bool = False,
) -> str:
    """Return the concatenation of every ``text/*`` leaf under *body*.

    Parameters
    ----------
    content_type:
        The message's top-level Content-Type value.
    body:
        The message body, as bytes or a readable binary stream.
    transfer_encoding:
        Top-level Content-Transfer-Encoding.  Only consulted for a
        single-part body when *include_single_part* is set.
    max_depth:
        Deepest multipart nesting accepted; the top-level multipart is
        depth 1.
    include_single_part:
        If *False* (the default) a non-multipart message yields ``""``.
        If *True*, a top-level ``text/*`` body is returned as its text.

    Raises :class:`MalformedMimeError` on an unparsable media type, a
    multipart without a boundary, missing delimiters, or nesting deeper
    than *max_depth*.
    """
    if not isinstance(body, bytes):
        body = body.read()

    media_type, params = parse_media_type(content_type)
    if media_type.startswith("multipart/"):
        collected: list[str] = []
        _collect(body, _boundary(media_type, params), 1, max_depth, collected)
        return "".join(collected)

    if include_single_part and media_type.startswith("text/"):
        return _decode_charset(_decode_transfer(body, transfer_encoding), params.get("charset"))
    return ""


def extract_message_text(
    message: RawMessage,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    include_single_part: bool = False,
) -> str:
    """Run :func:`extract_text` over a fetched message."""
    return extract_text(
        message.content_type,
        message.body,
        transfer_encoding=_first(message.header, "Content-Transfer-Encoding"),
        max_depth=max_depth,
        include_single_part=include_single_part,
    )


def _collect(body: bytes, boundary: str, depth: int, max_depth: int, out: list[str]) -> None:
    if depth > max_depth:
        raise MalformedMimeError(f"multipart nesting deeper than {max_depth} levels")

    for raw_part in _iter_parts(body, boundary):
        header, part_body = split_message(raw_part)
        # RFC 2046: a part without Content-Type is text/plain.
        media_type, params = parse_media_type(_first(header, "Content-Type") or "text/plain")

        if media_type.startswith("text/"):
            data = _decode_transfer(part_body, _first(header, "Content-Transfer-Encoding"))
            out.append(_decode_charset(data, params.get("charset")))
        elif media_type.startswith("multipart/"):
            _collect(part_body, _boundary(media_type, params), depth + 1, max_depth, out)


def _first(header: Message, name: str) -> str | None:
    values = header_values(header, name)
    return values[0] if values else None


def _iter_parts(body: bytes, boundary: str) -> Iterator[bytes]:
    """Yield the raw bytes of each part delimited by *boundary*, in order.

    The preamble and epilogue are discarded.  The line break preceding a
    delimiter belongs to the delimiter, not to the part.
    """
    delimiter = b"--" + boundary.encode("utf-8")
    closing = delimiter + b"--"
    lines: list[bytes] | None = None

    for line in body.splitlines(keepends=True):
        marker = line.rstrip(b" \t\r\n")
        if marker == delimiter or marker == closing:
            if lines is not None:
                yield _strip_line_break(b"".join(lines))
            if marker == closing:
                return
            lines = []
        elif lines is not None:
            lines.append(line)

    if lines is None:
        raise MalformedMimeError(f"no delimiter found for boundary {boundary!r}")
    raise MalformedMimeError(f"missing closing delimiter for boundary {boundary!r}")


def _strip_line_break(chunk: bytes) -> bytes:
    if chunk.endswith(b"\r\n"):
        return chunk[:-2]
    if chunk.endswith(b"\n"):
        return chunk[:-1]
    return chunk


def _boundary(media_type: str, params: dict[str, str]) -> str:
    boundary = params.get("boundary")
    if not boundary:
        raise MalformedMimeError(f"{media_type} declared without a boundary")
    return boundary


def _decode_transfer(body: bytes, encoding: str | None) -> bytes:
    name = (encoding or "7bit").strip().lower()
    if name == "base64":
        try:
            return base64.b64decode(body)
        except binascii.Error:
            # Undecodable; keep this leaf as received rather than lose the message.
            return body
    if name == "quoted-printable":
        return quopri.decodestring(body)
    return body


def _decode_charset(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")
