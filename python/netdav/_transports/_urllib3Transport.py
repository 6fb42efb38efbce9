# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = ("Urllib3Transport",)

import functools
import logging
from collections.abc import Iterator
from typing import Any

from urllib3 import HTTPHeaderDict, PoolManager
from urllib3.connection import HTTPSConnection
from urllib3.exceptions import HTTPError, SSLError
from urllib3.response import BaseHTTPResponse
from urllib3.util import Retry, Timeout

from ..davutils import redact_url
from ..errors import TransportError
from ._baseTransport import BaseTransport, DavResponse, VerifyCallback

log = logging.getLogger(__name__)


def make_retry() -> Retry:
    """Create a ``urllib3.util.Retry`` object which neither retries failed
    requests nor follows redirections: authentication challenges and
    redirections are handled by the caller.
    """
    return Retry(
        # Total number of retries to allow. A connection error is raised
        # at the first failure.
        total=0,
        # Return redirect responses as they are.
        redirect=False,
        # Return responses with any status code as they are.
        raise_on_status=False,
    )


class _CheckedHTTPSConnection(HTTPSConnection):
    """HTTPS connection submitting the certificate of the server to a
    caller-supplied verification callback after the TLS handshake.
    """

    def __init__(self, *args: Any, verify_callback: VerifyCallback, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._verify_callback = verify_callback

    def connect(self) -> None:
        super().connect()
        certificate = self.sock.getpeercert(binary_form=True) if self.sock is not None else None
        if not certificate or not self._verify_callback(certificate):
            self.close()
            raise SSLError(
                f"Certificate presented by {self.host}:{self.port} rejected by verification callback"
            )


class Urllib3Transport(BaseTransport):
    """Transport based on a ``urllib3.PoolManager``.

    This is the default transport. The pool manager keeps a single
    persistent network connection to the server.
    """

    def _open_session(self) -> PoolManager:
        ca_certs, ca_cert_dir = self._ca_locations()
        pool_manager = PoolManager(
            # All the requests go to the same "host:port".
            num_pools=1,
            # Number of connections to the server to persist for later
            # reuse. Requests are sent one at a time.
            maxsize=1,
            retries=make_retry(),
            # Socket timeout in seconds for each individual connection.
            timeout=Timeout(connect=self._timeout_connect, read=self._timeout_read),
            # Size in bytes of the buffer for reading/writing data from/to
            # the underlying socket.
            blocksize=self._config.buffer_size,
            # Client certificate and private key for esablishing TLS
            # connections. If None, no client certificate is sent to the
            # server. Only relevant for endpoints using secure HTTP protocol.
            cert_file=self._config.user_cert,
            key_file=self._config.user_key,
            cert_reqs="CERT_REQUIRED" if self._verify_server else "CERT_NONE",
            # Directory where the certificates of the trusted certificate
            # authorities can be found. The contents of that directory
            # must be as expected by OpenSSL.
            ca_cert_dir=ca_cert_dir,
            # Path to a file of concatenated CA certificates in PEM format.
            ca_certs=ca_certs,
        )

        if self._verify_callback is not None:
            if self._origin.startswith("https://"):
                pool = pool_manager.connection_from_url(self._origin)
                pool.ConnectionCls = functools.partial(  # type: ignore[assignment]
                    _CheckedHTTPSConnection, verify_callback=self._verify_callback
                )
            else:
                log.warning("ignoring verification callback for %s: not a secure endpoint", self._origin)

        return pool_manager

    def _close_session(self, session: PoolManager) -> None:
        session.clear()

    def _issue(
        self,
        session: PoolManager,
        method: str,
        url: str,
        headers: HTTPHeaderDict,
        body: Any,
        preload_content: bool,
    ) -> DavResponse:
        try:
            resp = session.request(
                method,
                url,
                body=body,
                headers=headers,
                preload_content=preload_content,
                redirect=False,
                retries=make_retry(),
                timeout=Timeout(connect=self._timeout_connect, read=self._timeout_read),
            )
        except HTTPError as e:
            raise TransportError(f"{method} {redact_url(url)} failed: {e}") from e

        if preload_content:
            return DavResponse(resp.status, resp.reason, resp.headers, url, data=resp.data)

        return DavResponse(
            resp.status,
            resp.reason,
            resp.headers,
            url,
            chunks=functools.partial(self._stream, resp, url),
            release=functools.partial(self._release, resp),
        )

    def _stream(self, resp: BaseHTTPResponse, url: str, chunk_size: int) -> Iterator[bytes]:
        try:
            yield from resp.stream(chunk_size)
        except HTTPError as e:
            raise TransportError(f"reading response body from {redact_url(url)} failed: {e}") from e

    def _release(self, resp: BaseHTTPResponse) -> None:
        try:
            resp.drain_conn()
        finally:
            resp.release_conn()
