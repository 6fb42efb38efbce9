# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = (
    "BaseTransport",
    "DavRequest",
    "DavResponse",
    "DavStreamBody",
    "RequestsTransport",
    "Sink",
    "TransportKind",
    "Urllib3Transport",
    "Verb",
    "VerifyCallback",
    "make_transport",
)

import enum

from ..davutils import DavConfig
from ._baseTransport import BaseTransport, DavRequest, DavResponse, DavStreamBody, Sink, Verb, VerifyCallback
from ._requestsTransport import RequestsTransport
from ._urllib3Transport import Urllib3Transport


class TransportKind(enum.Enum):
    """Available transports."""

    URLLIB3 = "urllib3"
    REQUESTS = "requests"


def make_transport(
    base_url: str, config: DavConfig, kind: TransportKind | str | None = None
) -> BaseTransport:
    """Create the transport to talk to the server at `base_url`.

    Parameters
    ----------
    base_url : `str`
        URL of the server.
    config : `DavConfig`
        Configuration of the endpoint.
    kind : `TransportKind` or `str`, optional
        Transport to create. If None, the transport named in `config` is
        used.
    """
    kind = TransportKind(config.transport if kind is None else kind)
    match kind:
        case TransportKind.URLLIB3:
            return Urllib3Transport(base_url, config)
        case TransportKind.REQUESTS:
            return RequestsTransport(base_url, config)
