# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = (
    "AuthenticationRejected",
    "BasicAuthDisabled",
    "CrossOriginError",
    "CrossOriginRebase",
    "CrossOriginRedirect",
    "DavError",
    "MalformedChallenge",
    "MalformedMultistatus",
    "ProtocolError",
    "ResourceNotFound",
    "TooManyHops",
    "TransportError",
    "UnsupportedVerb",
)

from http import HTTPStatus


class DavError(Exception):
    """Base class of all the errors raised by this package."""


class TransportError(DavError, OSError):
    """The request could not be exchanged with the server (connection
    refused, timeout, TLS failure...).
    """


class ProtocolError(DavError, ValueError):
    """The server answered with a status the client does not retry.

    Parameters
    ----------
    status : `int`
        Status code of the response.
    message : `str`
        Reason phrase of the response status line.
    url : `str`, optional
        URL the failed request was sent to.
    """

    def __init__(self, status: int, message: str, url: str | None = None) -> None:
        self.status = status
        self.message = message
        self.url = url
        text = f"{status} {message}"
        if url is not None:
            text = f"{text} [{url}]"
        super().__init__(text)

    @staticmethod
    def for_status(status: int, message: str, url: str | None = None) -> ProtocolError:
        """Return the most specific error class for `status`."""
        match status:
            case HTTPStatus.NOT_FOUND:
                return ResourceNotFound(status, message, url)
            case HTTPStatus.UNAUTHORIZED:
                return AuthenticationRejected(status, message, url)
            case _:
                return ProtocolError(status, message, url)


class ResourceNotFound(ProtocolError, FileNotFoundError):
    """The server answered 404 Not Found."""


class AuthenticationRejected(ProtocolError):
    """The server answered 401 and there are no usable credentials, or the
    credentials were already sent and rejected.
    """


class BasicAuthDisabled(DavError):
    """The server asks for Basic authentication but Basic authentication
    is disabled for this client.
    """


class MalformedChallenge(DavError, ValueError):
    """The WWW-Authenticate header of a 401 response cannot be parsed."""


class MalformedMultistatus(DavError, ValueError):
    """The body of a PROPFIND or PROPPATCH response is not a multistatus
    document.
    """


class TooManyHops(DavError):
    """The budget of redirects or authentication retries of a request
    is exhausted.
    """


class CrossOriginError(DavError, ValueError):
    """A URL does not share the scheme, host and port of the base location."""


class CrossOriginRedirect(CrossOriginError):
    """The server redirected to a different origin."""


class CrossOriginRebase(CrossOriginError):
    """The base location was asked to move to a different origin."""


class UnsupportedVerb(DavError, TypeError):
    """A request was built or sent with a method the client does not
    support for that kind of exchange.
    """
