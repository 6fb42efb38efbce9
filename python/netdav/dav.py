# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = ("CONFIG_ENV_VAR", "DavClient", "PropfindMode", "start")

import contextlib
import enum
import logging
import posixpath
import re
import xml.etree.ElementTree as eTree
from collections.abc import Callable, Iterator, Mapping
from typing import Any, BinaryIO
from urllib.parse import unquote, urlsplit, urlunsplit

from ._transports import (
    BaseTransport,
    DavRequest,
    DavResponse,
    DavStreamBody,
    Sink,
    TransportKind,
    Verb,
    VerifyCallback,
    make_transport,
)
from .davutils import (
    ACL_PROPFIND_BODY,
    ALLPROP_PROPFIND_BODY,
    XML_CONTENT_TYPE,
    DavConfig,
    DavConfigPool,
    DavPropfindParser,
    make_proppatch_body,
    normalize_path,
    parse_multistatus,
    redact_url,
    resolve_url,
    same_origin,
    url_origin,
)
from .errors import CrossOriginError, CrossOriginRebase, DavError
from .item import DavItem, ItemKind
from .pipeline import DavAuthState, DavPipeline

log = logging.getLogger(__name__)

# Name of the environment variable holding the path of the configuration
# file of the webDAV endpoints.
CONFIG_ENV_VAR = "NETDAV_CONFIG"


class PropfindMode(enum.Enum):
    """Body of the PROPFIND request sent by `DavClient.list_properties`."""

    # Request all the properties of the resource.
    ALL = "all"

    # Request the access control properties of the resource.
    ACL = "acl"

    # Send a body supplied by the caller.
    CUSTOM = "custom"


def _http_url(url: str) -> str:
    """Replace the 'dav' and 'davs' schemes of `url` by 'http' and
    'https'.
    """
    parts = urlsplit(url)
    if parts.scheme.lower() in ("dav", "davs"):
        parts = parts._replace(scheme=parts.scheme.lower().replace("dav", "http"))

    return urlunsplit(parts)


def _request_target(url: str) -> str:
    """Return the path and query of `url`, as sent in the request line."""
    parts = urlsplit(url)
    return urlunsplit(("", "", parts.path or "/", parts.query, ""))


class DavClient:
    """WebDAV client bound to a base location.

    Relative paths given to the operations of this client are resolved
    against the base location, which may be changed with `cd` as long as
    it stays on the same server.

    Parameters
    ----------
    url : `str`
        Base location, e.g. "https://host.example.org:1234/path/to/dir/".
        The 'dav' and 'davs' schemes are accepted as synonyms of 'http'
        and 'https'.
    config : `DavConfig`, optional
        Configuration of the endpoint. If None, the configuration for `url`
        is looked up in the file named by the environment variable
        ``NETDAV_CONFIG``, if any, or the default configuration is used.
    transport : `BaseTransport`, `TransportKind` or `str`, optional
        Transport to exchange requests with. If a `TransportKind` or its
        name is given, a transport of that kind is created. If None, the
        transport named in the configuration is created.

    Notes
    -----
    Instances of this class are not thread-safe: a client is meant to be
    used by a single caller at a time.
    """

    def __init__(
        self,
        url: str,
        config: DavConfig | None = None,
        *,
        transport: BaseTransport | TransportKind | str | None = None,
    ) -> None:
        self._base_url: str = _http_url(url)
        if config is None:
            config = DavConfigPool(CONFIG_ENV_VAR).get_config_for_url(self._base_url)

        self._config: DavConfig = config

        if isinstance(transport, BaseTransport):
            self._transport = transport
        else:
            self._transport = make_transport(self._base_url, config, transport)

        auth = DavAuthState(
            username=config.username,
            password=config.password,
            disable_basic_auth=config.disable_basic_auth,
        )
        self._pipeline = DavPipeline(
            self._transport,
            self._base_url,
            auth=auth,
            max_redirects=config.max_redirects,
            max_auth_retries=config.max_auth_retries,
        )

        # Parser of PROPFIND responses.
        self._propfind_parser: DavPropfindParser = DavPropfindParser()

    def __repr__(self) -> str:
        return f"DavClient({redact_url(self._base_url)})"

    def __enter__(self) -> DavClient:
        self._transport.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def config(self) -> DavConfig:
        return self._config

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    @contextlib.contextmanager
    def start(self) -> Iterator[DavClient]:
        """Open the session to the server for the duration of a ``with``
        block. The session is closed on exit, even if an exception is
        raised.

        Examples
        --------
        >>> with DavClient("https://host.example.org/dir/").start() as dav:
        ...     for item in dav.find("/dir/"):
        ...         print(item.url, item.size)
        """
        self._transport.open()
        try:
            yield self
        finally:
            self.close()

    def close(self) -> None:
        """Close the session to the server. It is reopened by the next
        request, if any.
        """
        self._transport.close()

    def credentials(self, username: str, password: str) -> None:
        """Set the credentials used to answer authentication challenges."""
        self._pipeline.auth.username = username
        self._pipeline.auth.password = password

    @property
    def disable_basic_auth(self) -> bool:
        return self._pipeline.auth.disable_basic_auth

    @disable_basic_auth.setter
    def disable_basic_auth(self, value: bool) -> None:
        self._pipeline.auth.disable_basic_auth = bool(value)

    @property
    def read_timeout(self) -> float:
        return self._transport.timeout_read

    @read_timeout.setter
    def read_timeout(self, seconds: float) -> None:
        self._transport.timeout_read = seconds

    @property
    def connect_timeout(self) -> float:
        return self._transport.timeout_connect

    @connect_timeout.setter
    def connect_timeout(self, seconds: float) -> None:
        self._transport.timeout_connect = seconds

    @property
    def verify_server(self) -> bool:
        return self._transport.verify_server

    @verify_server.setter
    def verify_server(self, value: bool) -> None:
        self._transport.verify_server = value

    @property
    def verify_callback(self) -> VerifyCallback | None:
        return self._transport.verify_callback

    @verify_callback.setter
    def verify_callback(self, callback: VerifyCallback | None) -> None:
        self._transport.verify_callback = callback

    def cd(self, url: str) -> None:
        """Change the base location used for resolving relative paths.

        Parameters
        ----------
        url : `str`
            New base location, absolute or relative to the current one.

        Raises
        ------
        CrossOriginRebase
            If the new location is not on the same scheme, host and port as
            the current one, or is not a valid URL.
        """
        new_url = self._resolve_url(url, CrossOriginRebase)
        if not same_origin(new_url, self._base_url):
            raise CrossOriginRebase(
                f"Can not change base location from {redact_url(self._base_url)} to "
                f"{redact_url(new_url)}: scheme, host and port must not change"
            )

        log.debug("changing base location to %s", redact_url(new_url))
        self._base_url = new_url

    def resolve(self, path: str) -> str:
        """Return the absolute URL of `path`, resolved against the base
        location.

        Raises
        ------
        CrossOriginError
            If `path` resolves to a URL on a different server or to an
            invalid URL.
        """
        url = self._resolve_url(path, CrossOriginError)
        if not same_origin(url, self._base_url):
            raise CrossOriginError(
                f"{redact_url(url)} is not on the same server as {redact_url(self._base_url)}"
            )

        return url

    def _resolve_url(self, path: str, error: type[CrossOriginError]) -> str:
        try:
            url = _http_url(resolve_url(self._base_url, path))
            url_origin(url)
        except ValueError as e:
            # urllib3 LocationParseError is a ValueError.
            raise error(f"{redact_url(path)} is not a valid URL: {e}") from e

        return url

    def get(self, path: str, sink: Sink | None = None) -> bytes | None:
        """Return the content of the resource at `path`.

        Parameters
        ----------
        path : `str`
            Path of the resource.
        sink : `Sink`, optional
            If provided, each chunk of the content is passed to `sink` as it
            is read from the network instead of being accumulated. If
            `sink` returns False, the rest of the content is discarded.

        Returns
        -------
        content : `bytes` or `None`
            The content of the resource, or None if `sink` was provided.
        """
        resp = self._request(Verb.GET, path, sink=sink)
        return None if sink is not None else resp.data

    def put(
        self,
        path: str,
        content: str | bytes | BinaryIO,
        length: int | None = None,
        content_type: str = "application/octet-stream",
    ) -> bytes:
        """Store `content` at `path`.

        Parameters
        ----------
        path : `str`
            Path of the resource.
        content : `str`, `bytes` or `BinaryIO`
            Content to store. A `str` is encoded as UTF-8. A binary stream
            is read as the request is sent and requires `length`.
        length : `int`, optional
            Number of bytes to read from `content` if it is a stream.
        content_type : `str`, optional
            Value of the Content-Type header of the request.

        Returns
        -------
        body : `bytes`
            Body of the response of the server.
        """
        body: str | bytes | DavStreamBody
        if isinstance(content, str | bytes):
            body = content
        elif isinstance(content, bytearray | memoryview):
            body = bytes(content)
        else:
            if length is None:
                raise ValueError(f"Length is required to store a stream at {path}")
            body = DavStreamBody(content, length)

        return self._request(Verb.PUT, path, {"Content-Type": content_type}, body).data

    def delete(self, path: str) -> bytes:
        """Delete the resource at `path`."""
        return self._request(Verb.DELETE, path).data

    def make_collection(self, path: str) -> bytes:
        """Create a collection at `path`. Its parent must exist."""
        return self._request(Verb.MKCOL, path).data

    def move(self, path: str, destination: str, overwrite: bool | None = None) -> bytes:
        """Move the resource at `path` to `destination`.

        Parameters
        ----------
        path : `str`
            Path of the resource to move.
        destination : `str`
            Path of the destination, on the same server.
        overwrite : `bool`, optional
            If provided, tell the server whether an existing resource at
            `destination` may be overwritten. Otherwise the server applies
            its default.
        """
        return self._transfer(Verb.MOVE, path, destination, overwrite)

    def copy(self, path: str, destination: str, overwrite: bool | None = None) -> bytes:
        """Copy the resource at `path` to `destination`. See `move`."""
        return self._transfer(Verb.COPY, path, destination, overwrite)

    def _transfer(self, verb: Verb, path: str, destination: str, overwrite: bool | None) -> bytes:
        headers = {"Destination": self.resolve(destination)}
        if overwrite is not None:
            headers["Overwrite"] = "T" if overwrite else "F"

        return self._request(verb, path, headers).data

    def list_properties(
        self,
        path: str,
        mode: PropfindMode | str = PropfindMode.ALL,
        body: str | None = None,
    ) -> eTree.Element:
        """Send a PROPFIND request for `path` and its immediate children.

        Parameters
        ----------
        path : `str`
            Path of the resource.
        mode : `PropfindMode` or `str`, optional
            Properties to ask for: all of them, the access control ones, or
            those requested by `body`.
        body : `str`, optional
            XML body of the request. Required in mode `PropfindMode.CUSTOM`
            and rejected otherwise.

        Returns
        -------
        multistatus : `xml.etree.ElementTree.Element`
            The 'multistatus' root element of the response.
        """
        mode = PropfindMode(mode)
        if (mode is PropfindMode.CUSTOM) != (body is not None):
            raise ValueError(f"A request body must be provided if and only if mode is {PropfindMode.CUSTOM}")

        match mode:
            case PropfindMode.ALL:
                body = ALLPROP_PROPFIND_BODY
            case PropfindMode.ACL:
                body = ACL_PROPFIND_BODY

        resp = self._request(Verb.PROPFIND, path, body=body)
        return parse_multistatus(resp.data)

    def update_properties(self, path: str, fragment: str) -> eTree.Element | None:
        """Set the properties of the resource at `path`.

        Parameters
        ----------
        path : `str`
            Path of the resource.
        fragment : `str`
            Property elements to set, e.g.
            '<d:creationdate>2024-01-01T00:00:00Z</d:creationdate>'.

        Returns
        -------
        multistatus : `xml.etree.ElementTree.Element` or `None`
            The 'multistatus' root element of the response, or None if the
            server answered without a body.
        """
        resp = self._request(Verb.PROPPATCH, path, body=make_proppatch_body(fragment))
        return parse_multistatus(resp.data) if resp.data.strip() else None

    def exists(self, path: str) -> bool:
        """Return True if the server answers successfully a PROPFIND request
        for `path`. Any failure, including a network failure, is reported as
        False.
        """
        try:
            self._request(Verb.PROPFIND, path, body=ALLPROP_PROPFIND_BODY)
        except DavError as e:
            log.debug("considering %s does not exist: %s", path, e)
            return False

        return True

    def find(
        self,
        path: str,
        *,
        recursive: bool = False,
        filename: str | re.Pattern | None = None,
        suppress_errors: bool = False,
    ) -> Iterator[DavItem]:
        """Iterate over the files and collections found at `path`.

        Parameters
        ----------
        path : `str`
            Path of the collection to list.
        recursive : `bool`, optional
            If True, the sub-collections are listed too, depth-first. Each
            collection is returned before its contents.
        filename : `str` or `re.Pattern`, optional
            If provided, only the files whose name is equal to `filename`,
            or where the pattern `filename` is found, are returned.
            Collections are never returned.
        suppress_errors : `bool`, optional
            If True, a collection which can not be listed is skipped with a
            warning. Otherwise the error is raised.

        Yields
        ------
        item : `DavItem`
            Files and collections found. The collection at `path` itself is
            not included.

        Notes
        -----
        Listing happens as the returned iterator is consumed: leaving the
        loop early stops the traversal and no more requests are sent.
        """
        yield from self._find(self.resolve(path), recursive, filename, suppress_errors)

    def find_each(self, path: str, callback: Callable[[DavItem], Any], **options: Any) -> None:
        """Call `callback` for each item `find` returns. Exceptions raised by
        `callback` stop the traversal and are propagated.
        """
        for item in self.find(path, **options):
            callback(item)

    def _find(
        self,
        url: str,
        recursive: bool,
        filename: str | re.Pattern | None,
        suppress_errors: bool,
    ) -> Iterator[DavItem]:
        try:
            resp = self._request(Verb.PROPFIND, url, body=ALLPROP_PROPFIND_BODY)
            properties = self._propfind_parser.parse(resp.data)
        except DavError as e:
            if suppress_errors:
                log.warning("skipping %s: %s", redact_url(url), e)
                return

            e.add_note(f"while listing {redact_url(url)}")
            raise

        own_path = normalize_path(unquote(urlsplit(url).path))
        for prop in properties:
            item_url = _http_url(resolve_url(self._base_url, prop.href))
            item_path = normalize_path(unquote(urlsplit(item_url).path))
            if prop.is_file:
                item = DavItem(
                    self,
                    item_url,
                    ItemKind.FILE,
                    prop.size,
                    display_name=prop.name,
                    last_modified=prop.last_modified,
                )
                if filename is None or self._matches(posixpath.basename(item_path), filename):
                    yield item
            elif item_path == own_path:
                # The server includes the listed collection itself.
                continue
            elif prop.is_dir:
                if filename is None:
                    yield DavItem(
                        self,
                        item_url,
                        ItemKind.COLLECTION,
                        display_name=prop.name,
                        last_modified=prop.last_modified,
                    )
                if recursive:
                    yield from self._find(item_url, recursive, filename, suppress_errors)

    @staticmethod
    def _matches(name: str, filename: str | re.Pattern) -> bool:
        if isinstance(filename, re.Pattern):
            return filename.search(name) is not None

        return name == filename

    def _request(
        self,
        verb: Verb,
        path: str,
        headers: Mapping[str, str] | None = None,
        body: str | bytes | DavStreamBody | None = None,
        sink: Sink | None = None,
    ) -> DavResponse:
        """Build a request for `path` and send it through the pipeline."""
        request_headers = dict(headers or {})
        if verb in (Verb.PROPFIND, Verb.PROPPATCH):
            request_headers["Depth"] = "1"

        if verb.xml_body and body is not None:
            request_headers["Content-Type"] = XML_CONTENT_TYPE

        request = DavRequest(verb, _request_target(self.resolve(path)), request_headers, body)
        return self._pipeline.dispatch(request, sink)


@contextlib.contextmanager
def start(url: str, config: DavConfig | None = None, **kwargs: Any) -> Iterator[DavClient]:
    """Create a client for `url` and open its session for the duration of
    a ``with`` block.

    Parameters
    ----------
    url : `str`
        Base location.
    config : `DavConfig`, optional
        Configuration of the endpoint.
    **kwargs
        Other arguments of `DavClient`.
    """
    client = DavClient(url, config, **kwargs)
    with client.start():
        yield client
