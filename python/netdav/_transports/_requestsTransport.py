# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = ("RequestsTransport",)

import functools
import logging
from collections.abc import Iterator
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3 import HTTPHeaderDict

from ..davutils import redact_url
from ..errors import TransportError
from ._baseTransport import BaseTransport, DavResponse

log = logging.getLogger(__name__)


class RequestsTransport(BaseTransport):
    """Transport based on a ``requests.Session``.

    Notes
    -----
    Verification callbacks are not supported by ``requests``: if one is
    configured, it is ignored and a warning is emitted.
    """

    def _open_session(self) -> requests.Session:
        ca_certs, ca_cert_dir = self._ca_locations()
        session = requests.Session()

        # Neither retry failed requests nor pool more than one connection
        # to the server.
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1, max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        if not self._verify_server:
            session.verify = False
        elif (trusted := ca_certs or ca_cert_dir) is not None:
            session.verify = trusted

        if (user_cert := self._config.user_cert) is not None:
            session.cert = (user_cert, self._config.user_key or user_cert)

        if self._verify_callback is not None:
            log.warning("verification callback is not supported by the requests transport, ignoring it")

        return session

    def _close_session(self, session: requests.Session) -> None:
        session.close()

    def _issue(
        self,
        session: requests.Session,
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
                data=body,
                headers=dict(headers.itermerged()),
                stream=not preload_content,
                allow_redirects=False,
                timeout=(self._timeout_connect, self._timeout_read),
            )
            data = resp.content if preload_content else None
        except requests.RequestException as e:
            raise TransportError(f"{method} {redact_url(url)} failed: {e}") from e

        # Keep repeated headers (e.g. several WWW-Authenticate challenges)
        # apart when the underlying urllib3 response is available.
        raw_headers = getattr(resp.raw, "headers", None)
        resp_headers = HTTPHeaderDict(raw_headers if raw_headers is not None else resp.headers)

        if preload_content:
            return DavResponse(resp.status_code, resp.reason, resp_headers, url, data=data)

        return DavResponse(
            resp.status_code,
            resp.reason,
            resp_headers,
            url,
            chunks=functools.partial(self._stream, resp, url),
            release=functools.partial(self._release, resp),
        )

    def _stream(self, resp: requests.Response, url: str, chunk_size: int) -> Iterator[bytes]:
        try:
            yield from resp.iter_content(chunk_size)
        except requests.RequestException as e:
            raise TransportError(f"reading response body from {redact_url(url)} failed: {e}") from e

    def _release(self, resp: requests.Response) -> None:
        # Read what is left of the body so that the connection can be
        # reused.
        if (drain_conn := getattr(resp.raw, "drain_conn", None)) is not None:
            drain_conn()

        resp.close()
