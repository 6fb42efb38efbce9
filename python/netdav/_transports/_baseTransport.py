# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = ("BaseTransport", "DavRequest", "DavResponse", "DavStreamBody", "Sink", "Verb", "VerifyCallback")

import enum
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from http import HTTPStatus
from typing import Any, BinaryIO

from astropy import units as u
from urllib3 import HTTPHeaderDict

from lsst.utils.timer import time_this

from ..davutils import DavConfig, normalize_url, redact_url
from ..errors import UnsupportedVerb

log = logging.getLogger(__name__)

# A sink receives each chunk of a response body as it arrives. Returning
# False stops further delivery.
Sink = Callable[[bytes], bool | None]

# A verification callback receives the DER-encoded certificate presented by
# the server and returns True to accept it.
VerifyCallback = Callable[[bytes], bool]


class Verb(enum.Enum):
    """Request methods the client can send, each with the rules used to
    build and send requests of that kind.

    The value of each member is a tuple (method, xml_body, streams_out,
    streams_in).
    """

    PROPFIND = ("PROPFIND", True, False, False)
    PROPPATCH = ("PROPPATCH", True, False, False)
    MKCOL = ("MKCOL", False, False, False)
    DELETE = ("DELETE", False, False, False)
    MOVE = ("MOVE", False, False, False)
    COPY = ("COPY", False, False, False)
    GET = ("GET", False, True, False)
    PUT = ("PUT", False, False, True)

    def __init__(self, method: str, xml_body: bool, streams_out: bool, streams_in: bool) -> None:
        # HTTP method name.
        self.method = method
        # Does the request body of this verb carry XML?
        self.xml_body = xml_body
        # Can the response body be streamed to a sink?
        self.streams_out = streams_out
        # Can the request body be streamed from a caller-provided source?
        self.streams_in = streams_in


class _BoundedReader:
    """Read at most `length` bytes from `source`."""

    def __init__(self, source: BinaryIO, length: int, chunk_size: int) -> None:
        self._source = source
        self._remaining = length
        self._chunk_size = chunk_size

    def __len__(self) -> int:
        return self._remaining

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""

        if size is None or size < 0 or size > self._remaining:
            size = self._remaining

        data = self._source.read(size)
        self._remaining -= len(data)
        return data

    def __iter__(self) -> Iterator[bytes]:
        while chunk := self.read(self._chunk_size):
            yield chunk


class DavStreamBody:
    """Request body read from a binary stream of known length.

    Parameters
    ----------
    source : `BinaryIO`
        Stream to read the body from.
    length : `int`
        Number of bytes to read from `source`.

    Notes
    -----
    If `source` is seekable, its current position is remembered so that
    the body can be sent again when a request is retried.
    """

    def __init__(self, source: BinaryIO, length: int) -> None:
        if length < 0:
            raise ValueError(f"Length of a streamed body must not be negative: {length}")

        self._source = source
        self._length = length
        self._start: int | None = None
        seekable = getattr(source, "seekable", None)
        if seekable is not None and seekable():
            self._start = source.tell()

        self._consumed = False

    @property
    def length(self) -> int:
        return self._length

    def open(self, chunk_size: int) -> _BoundedReader:
        """Return a reader of this body, positioned at its start."""
        if self._consumed:
            if self._start is None:
                raise ValueError("Can not send again a request body read from a non-seekable stream")

            self._source.seek(self._start)

        self._consumed = True
        return _BoundedReader(self._source, self._length, chunk_size)


class DavRequest:
    """Immutable description of a request to send to the server.

    Parameters
    ----------
    verb : `Verb`
        Request method.
    path : `str`
        Path (and query) of the target resource, relative to the origin
        of the server, e.g. '/path/to/file?x=1'.
    headers : `Mapping` [ `str`, `str` ], optional
        Request headers. Names are case-insensitive.
    body : `bytes`, `str`, `DavStreamBody` or `None`, optional
        Request body. A `str` is encoded as UTF-8.
    """

    def __init__(
        self,
        verb: Verb,
        path: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | str | DavStreamBody | None = None,
    ) -> None:
        if not isinstance(verb, Verb):
            raise UnsupportedVerb(f"Unsupported request method {verb!r}")

        self._verb: Verb = verb
        self._path: str = path or "/"
        self._headers: HTTPHeaderDict = HTTPHeaderDict(headers or {})
        self._body: bytes | DavStreamBody | None = body.encode("utf-8") if isinstance(body, str) else body

    def __repr__(self) -> str:
        return f"DavRequest({self._verb.method} {self._path})"

    @property
    def verb(self) -> Verb:
        return self._verb

    @property
    def path(self) -> str:
        return self._path

    @property
    def headers(self) -> HTTPHeaderDict:
        # Return a copy so that this request is never modified.
        return self._headers.copy()

    @property
    def body(self) -> bytes | DavStreamBody | None:
        return self._body

    @property
    def is_streamed(self) -> bool:
        return isinstance(self._body, DavStreamBody)

    def has_header(self, name: str) -> bool:
        return name in self._headers

    def get_header(self, name: str, default: str | None = None) -> str | None:
        return self._headers.get(name, default)

    def with_path(self, path: str) -> DavRequest:
        """Return a copy of this request targeting `path`."""
        return DavRequest(self._verb, path, self._headers, self._body)

    def with_header(self, name: str, value: str) -> DavRequest:
        """Return a copy of this request with header `name` set to
        `value`.
        """
        headers = self._headers.copy()
        headers[name] = value
        return DavRequest(self._verb, self._path, headers, self._body)

    def without_header(self, name: str) -> DavRequest:
        """Return a copy of this request without header `name`."""
        headers = self._headers.copy()
        headers.discard(name)
        return DavRequest(self._verb, self._path, headers, self._body)


class DavResponse:
    """Response received from the server.

    Parameters
    ----------
    status : `int`
        Status code.
    reason : `str`
        Reason phrase of the status line.
    headers : `Mapping` [ `str`, `str` ]
        Response headers.
    url : `str`
        URL the request was sent to.
    data : `bytes`, optional
        Response body, if already read.
    chunks : `Callable` [ [ `int` ], `Iterator` [ `bytes` ] ], optional
        Function returning an iterator over the response body, by chunks
        of the requested size, when the body was not read yet.
    release : `Callable`, optional
        Function to call to release the underlying network connection when
        the caller is done with this response.
    """

    def __init__(
        self,
        status: int,
        reason: str | None,
        headers: Mapping[str, str],
        url: str,
        data: bytes | None = None,
        chunks: Callable[[int], Iterator[bytes]] | None = None,
        release: Callable[[], None] | None = None,
    ) -> None:
        self._status: int = int(status)
        if not reason:
            try:
                reason = HTTPStatus(self._status).phrase
            except ValueError:
                reason = ""

        self._reason: str = reason
        self._headers: HTTPHeaderDict = HTTPHeaderDict(headers)
        self._url: str = url
        self._data: bytes | None = data if data is not None or chunks is not None else b""
        self._chunks = chunks
        self._release = release

    def __repr__(self) -> str:
        return f"DavResponse({self._status} {self._reason} {redact_url(self._url)})"

    @property
    def status(self) -> int:
        return self._status

    @property
    def reason(self) -> str:
        return self._reason

    @property
    def headers(self) -> HTTPHeaderDict:
        return self._headers

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_success(self) -> bool:
        return 200 <= self._status < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self._status < 400

    @property
    def is_unauthorized(self) -> bool:
        return self._status == HTTPStatus.UNAUTHORIZED

    @property
    def data(self) -> bytes:
        """Response body. If the body was not read yet it is read entirely
        and the connection released.
        """
        if self._data is None:
            chunks, self._chunks = self._chunks, None
            self._data = b"".join(chunks(65_536)) if chunks is not None else b""
            self.release()

        return self._data

    def stream(self, chunk_size: int) -> Iterator[bytes]:
        """Iterate over the response body by chunks of at most `chunk_size`
        bytes.
        """
        if self._data is not None:
            for start in range(0, len(self._data), chunk_size):
                yield self._data[start : start + chunk_size]
            return

        chunks, self._chunks = self._chunks, None
        self._data = b""
        if chunks is not None:
            yield from chunks(chunk_size)

    def release(self) -> None:
        """Release the network connection used to receive this response,
        reading and discarding the rest of its body if needed.
        """
        release, self._release = self._release, None
        if release is not None:
            release()


class BaseTransport(ABC):
    """Exchange requests with the server at a single base location over a
    persistent session.

    Parameters
    ----------
    base_url : `str`
        URL of the server. Only its scheme, host and port are used.
    config : `DavConfig`
        Configuration of the endpoint.

    Notes
    -----
    The session is opened explicitly by `open` or lazily by the first
    request and stays open until `close`. Instances of this class are not
    thread-safe.
    """

    def __init__(self, base_url: str, config: DavConfig) -> None:
        parsed_url = normalize_url(base_url, preserve_path=False)
        self._origin: str = parsed_url.rstrip("/")
        self._config: DavConfig = config
        self._timeout_connect: float = config.timeout_connect
        self._timeout_read: float = config.timeout_read
        self._verify_server: bool = config.verify_server
        self._verify_callback: VerifyCallback | None = None
        self._session: Any = None

    def __enter__(self) -> BaseTransport:
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def timeout_connect(self) -> float:
        return self._timeout_connect

    @timeout_connect.setter
    def timeout_connect(self, value: float) -> None:
        self._timeout_connect = float(value)

    @property
    def timeout_read(self) -> float:
        return self._timeout_read

    @timeout_read.setter
    def timeout_read(self, value: float) -> None:
        self._timeout_read = float(value)

    @property
    def verify_server(self) -> bool:
        return self._verify_server

    @verify_server.setter
    def verify_server(self, value: bool) -> None:
        # TLS settings are fixed for the lifetime of a session.
        self._verify_server = bool(value)
        self.close()

    @property
    def verify_callback(self) -> VerifyCallback | None:
        return self._verify_callback

    @verify_callback.setter
    def verify_callback(self, callback: VerifyCallback | None) -> None:
        self._verify_callback = callback
        self.close()

    def open(self) -> None:
        """Open the session to the server, if it is not already open."""
        if self._session is None:
            log.debug("opening session to %s", redact_url(self._origin))
            self._session = self._open_session()

    def close(self) -> None:
        """Close the session to the server, if any."""
        session, self._session = self._session, None
        if session is not None:
            log.debug("closing session to %s", redact_url(self._origin))
            self._close_session(session)

    def send(self, request: DavRequest) -> DavResponse:
        """Send `request` and return the response with its body entirely
        read.
        """
        if request.is_streamed:
            return self.send_streaming_in(request)

        return self._exchange(request, preload_content=True)

    def send_streaming_out(
        self,
        request: DavRequest,
        sink: Sink,
        deliver: Callable[[DavResponse], bool] | None = None,
    ) -> DavResponse:
        """Send `request` and push each chunk of the response body to
        `sink` as it arrives.

        Parameters
        ----------
        request : `DavRequest`
            Request to send. Its verb must allow streaming its response.
        sink : `Sink`
            Function receiving each chunk of the body. If it returns False,
            no more chunks are delivered and the rest of the body is
            discarded.
        deliver : `Callable` [ [ `DavResponse` ], `bool` ], optional
            Function deciding, from the status and headers of the response,
            whether its body must be delivered to `sink`. If it returns
            False, the body is discarded. By default every body is
            delivered.

        Returns
        -------
        response : `DavResponse`
            The response, whose body was consumed.
        """
        if not request.verb.streams_out:
            raise UnsupportedVerb(f"Response to {request.verb.method} requests can not be streamed")

        resp = self._exchange(request, preload_content=False)
        try:
            if deliver is None or deliver(resp):
                for chunk in resp.stream(self._config.buffer_size):
                    if sink(chunk) is False:
                        log.debug("sink stopped delivery of response body of %s", redact_url(resp.url))
                        break
        finally:
            resp.release()

        return resp

    def send_streaming_in(self, request: DavRequest) -> DavResponse:
        """Send `request` whose body is read from a stream of known
        length and return the response with its body entirely read.
        """
        if not request.verb.streams_in:
            raise UnsupportedVerb(f"Body of {request.verb.method} requests can not be streamed")

        if not request.is_streamed:
            raise TypeError(f"{request!r} does not have a streamed body")

        return self._exchange(request, preload_content=True)

    def _exchange(self, request: DavRequest, preload_content: bool) -> DavResponse:
        self.open()
        url = f"{self._origin}{request.path}"
        headers = request.headers
        body: Any = request.body
        if isinstance(body, DavStreamBody):
            headers["Content-Length"] = str(body.length)
            body = body.open(self._config.buffer_size) if body.length > 0 else b""

        log.debug("sending request %s %s", request.verb.method, redact_url(url))
        with time_this(
            log,
            msg="%s %s",
            args=(
                request.verb.method,
                redact_url(url),
            ),
            mem_usage=self._config.collect_memory_usage,
            mem_unit=u.mebibyte,
        ):
            return self._issue(self._session, request.verb.method, url, headers, body, preload_content)

    def _ca_locations(self) -> tuple[str | None, str | None]:
        """Return the file and the directory where the certificates of the
        trusted certificate authorities are.
        """
        ca_certs, ca_cert_dir = None, None
        if (trusted_authorities := self._config.trusted_authorities) is not None:
            if os.path.isdir(trusted_authorities):
                ca_cert_dir = trusted_authorities
            elif os.path.isfile(trusted_authorities):
                ca_certs = trusted_authorities
            else:
                raise FileNotFoundError(
                    f"Trusted authorities file or directory {trusted_authorities} does not exist"
                )

        return ca_certs, ca_cert_dir

    @abstractmethod
    def _open_session(self) -> Any:
        """Create the library object holding the persistent connection."""
        raise NotImplementedError()

    @abstractmethod
    def _close_session(self, session: Any) -> None:
        raise NotImplementedError()

    @abstractmethod
    def _issue(
        self,
        session: Any,
        method: str,
        url: str,
        headers: HTTPHeaderDict,
        body: Any,
        preload_content: bool,
    ) -> DavResponse:
        """Send a request over `session` and return the response.

        Parameters
        ----------
        session : `Any`
            Object returned by `_open_session`.
        method : `str`
            Request method.
        url : `str`
            Absolute target URL.
        headers : `HTTPHeaderDict`
            Request headers.
        body : `bytes`, file-like or `None`
            Request body.
        preload_content : `bool`
            If True, the body of the response is read before returning.
            Otherwise it must be read by the caller.

        Notes
        -----
        Network errors must be raised as `TransportError`.
        """
        raise NotImplementedError()
