# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

"""Authentication and redirection handling on top of a transport."""

from __future__ import annotations

__all__ = (
    "DavAuthState",
    "DavPipeline",
    "DispatchState",
    "make_basic_authorization",
    "make_digest_authorization",
    "parse_challenge",
)

import base64
import enum
import hashlib
import logging
import re
import uuid
from urllib.parse import urljoin, urlsplit, urlunsplit

from ._transports import BaseTransport, DavRequest, DavResponse, Sink
from .davutils import dump_response, redact_url, same_origin
from .errors import (
    AuthenticationRejected,
    BasicAuthDisabled,
    CrossOriginRedirect,
    MalformedChallenge,
    ProtocolError,
    TooManyHops,
)

log = logging.getLogger(__name__)

# Parameters of an authentication challenge, e.g. 'realm="x"' or 'stale=false'.
_challenge_param_rex = re.compile(r'(\w+)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^\s,]*))')

# Scheme of an authentication challenge, at the start of the header value.
_challenge_scheme_rex = re.compile(r"^\s*(\w+)(?:\s+(.*))?$", re.DOTALL)


class DispatchState(enum.Enum):
    """State of a request going through `DavPipeline.dispatch`."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    CHALLENGED_BASIC = "challenged-basic"
    CHALLENGED_DIGEST = "challenged-digest"
    REDIRECTED = "redirected"
    FAILED = "failed"


class DavAuthState:
    """Credentials and digest counters of a single pipeline.

    Parameters
    ----------
    username : `str`, optional
        User name.
    password : `str`, optional
        Password.
    disable_basic_auth : `bool`, optional
        If True, Basic authentication challenges are refused.
    cnonce : `str`, optional
        Client nonce to use for Digest authentication. By default a new
        random one is generated, so that two pipelines never share it.
    """

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        disable_basic_auth: bool = False,
        cnonce: str | None = None,
    ) -> None:
        self.username = username
        self.password = password
        self.disable_basic_auth = disable_basic_auth
        self.nonce_count: int = 0
        self.cnonce: str = cnonce if cnonce is not None else hashlib.md5(uuid.uuid4().bytes).hexdigest()[:8]

    @property
    def has_credentials(self) -> bool:
        return self.username is not None

    def next_nonce_count(self) -> int:
        """Increment the nonce count and return its new value."""
        self.nonce_count += 1
        return self.nonce_count


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Parse a single authentication challenge.

    Parameters
    ----------
    header : `str`
        Value of a WWW-Authenticate header, e.g.
        'Digest realm="x", nonce="abc", qop="auth"'.

    Returns
    -------
    scheme : `str`
        Lower-cased authentication scheme, e.g. "digest".
    params : `dict` [ `str`, `str` ]
        Parameters of the challenge. Names are lower-cased.
    """
    if (match := _challenge_scheme_rex.match(header or "")) is None:
        raise MalformedChallenge(f"Can not parse authentication challenge {header!r}")

    params: dict[str, str] = {}
    for name, quoted, token in _challenge_param_rex.findall(match.group(2) or ""):
        params[name.lower()] = re.sub(r"\\(.)", r"\1", quoted) if quoted else token

    return match.group(1).lower(), params


def _split_challenges(values: list[str]) -> list[str]:
    """Split the values of the WWW-Authenticate headers into individual
    challenges, each starting with its scheme.
    """
    challenges: list[str] = []
    for value in values:
        # A new challenge starts with a scheme token not followed by "=".
        for part in re.split(r",\s*(?=[A-Za-z][\w-]*(?:\s+[\w-]+\s*=|\s*$))", value):
            if part.strip():
                challenges.append(part.strip())

    return challenges


def make_basic_authorization(username: str, password: str) -> str:
    """Return the value of the Authorization header for Basic
    authentication.
    """
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def make_digest_authorization(
    username: str,
    password: str,
    method: str,
    uri: str,
    params: dict[str, str],
    nonce_count: int,
    cnonce: str,
) -> str:
    """Return the value of the Authorization header answering a Digest
    challenge with the MD5 algorithm (RFC 2617).

    Parameters
    ----------
    username : `str`
        User name.
    password : `str`
        Password.
    method : `str`
        Method of the request to authorize.
    uri : `str`
        Path (and query) of the request to authorize.
    params : `dict` [ `str`, `str` ]
        Parameters of the challenge, as returned by `parse_challenge`.
    nonce_count : `int`
        Number of times the nonce was used, including this time.
    cnonce : `str`
        Client nonce.
    """
    if "realm" not in params or "nonce" not in params:
        raise MalformedChallenge(f"Digest challenge without realm or nonce: {params}")

    if (algorithm := params.get("algorithm", "MD5")).upper() != "MD5":
        raise MalformedChallenge(f"Unsupported digest algorithm {algorithm}")

    realm, nonce = params["realm"], params["nonce"]
    nc = f"{nonce_count:08x}"
    ha1 = _md5(f"{username}:{realm}:{password}")
    ha2 = _md5(f"{method}:{uri}")

    qop = None
    if "qop" in params:
        offered = [value.strip() for value in params["qop"].split(",")]
        if "auth" not in offered:
            raise MalformedChallenge(f"Unsupported digest quality of protection {params['qop']}")
        qop = "auth"

    if qop is None:
        # RFC 2069 compatibility.
        response = _md5(f"{ha1}:{nonce}:{ha2}")
    else:
        response = _md5(f"{ha1}:{nonce}:{nc}:{cnonce}:{qop}:{ha2}")

    fields = [
        f'username="{username}"',
        f'realm="{realm}"',
        f'nonce="{nonce}"',
        f'uri="{uri}"',
    ]
    if qop is not None:
        fields += [f'cnonce="{cnonce}"', f"nc={nc}", f"qop={qop}"]

    fields += [f'response="{response}"', 'algorithm="MD5"']
    if "opaque" in params:
        fields.append(f'opaque="{params["opaque"]}"')

    return "Digest " + ", ".join(fields)


class DavPipeline:
    """Send requests through a transport, answering authentication
    challenges and following redirections within the origin of the base
    location.

    Parameters
    ----------
    transport : `BaseTransport`
        Transport to send requests with.
    base_url : `str`
        Base location. Redirections to other origins are refused.
    auth : `DavAuthState`, optional
        Credentials. If None, challenges are not answered.
    max_redirects : `int`, optional
        Maximum number of redirections followed by a single dispatch.
    max_auth_retries : `int`, optional
        Maximum number of authentication challenges answered by a single
        dispatch.

    Notes
    -----
    Instances of this class are not thread-safe.
    """

    def __init__(
        self,
        transport: BaseTransport,
        base_url: str,
        auth: DavAuthState | None = None,
        max_redirects: int = 10,
        max_auth_retries: int = 10,
    ) -> None:
        self._transport = transport
        self._base_url = base_url
        self._auth = auth if auth is not None else DavAuthState()
        self._max_redirects = max_redirects
        self._max_auth_retries = max_auth_retries

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    @property
    def auth(self) -> DavAuthState:
        return self._auth

    @property
    def max_redirects(self) -> int:
        return self._max_redirects

    @property
    def max_auth_retries(self) -> int:
        return self._max_auth_retries

    def dispatch(self, request: DavRequest, sink: Sink | None = None) -> DavResponse:
        """Send `request` and return the final successful response.

        Parameters
        ----------
        request : `DavRequest`
            Request to send.
        sink : `Sink`, optional
            If provided, the body of the successful response is pushed to
            `sink` chunk by chunk as it arrives and is not kept in the
            returned response. The bodies of responses which are retried
            are never delivered to `sink`.

        Returns
        -------
        response : `DavResponse`
            The 2xx response.

        Raises
        ------
        TooManyHops
            If the budget of redirections or authentication retries is
            exhausted.
        CrossOriginRedirect
            If the server redirects to another origin.
        AuthenticationRejected
            If the server requires authentication and no credentials are
            available or the credentials were rejected.
        ProtocolError
            If the server answers with any other non-2xx status.
        """
        redirects_left = self._max_redirects
        auth_retries_left = self._max_auth_retries
        state = DispatchState.PENDING
        while True:
            resp = self._send(request, sink)
            state = self._next_state(request, resp)
            log.debug("%s %s: %s", request.verb.method, request.path, state.value)
            match state:
                case DispatchState.SUCCEEDED:
                    return resp
                case DispatchState.CHALLENGED_BASIC | DispatchState.CHALLENGED_DIGEST:
                    if auth_retries_left == 0:
                        raise TooManyHops(
                            f"Too many authentication retries for {request.verb.method} "
                            f"{redact_url(resp.url)} (limit {self._max_auth_retries})"
                        )
                    auth_retries_left -= 1
                    request = self._authenticate(request, resp, state)
                case DispatchState.REDIRECTED:
                    if redirects_left == 0:
                        raise TooManyHops(
                            f"Too many redirections for {request.verb.method} "
                            f"{redact_url(resp.url)} (limit {self._max_redirects})"
                        )
                    redirects_left -= 1
                    request = self._redirect(request, resp)
                case _:
                    dump_response(request.verb.method, resp)
                    raise ProtocolError.for_status(resp.status, resp.reason, redact_url(resp.url))

    def _send(self, request: DavRequest, sink: Sink | None) -> DavResponse:
        if sink is None:
            return self._transport.send(request)

        # Only the body of the response we are going to return is
        # delivered to the caller.
        return self._transport.send_streaming_out(request, sink, deliver=lambda resp: resp.is_success)

    def _next_state(self, request: DavRequest, resp: DavResponse) -> DispatchState:
        if resp.is_success:
            return DispatchState.SUCCEEDED

        if resp.is_redirect:
            return DispatchState.REDIRECTED

        if not resp.is_unauthorized:
            return DispatchState.FAILED

        # Do not loop forever if the credentials are rejected.
        if not self._auth.has_credentials or request.has_header("Authorization"):
            raise AuthenticationRejected(resp.status, resp.reason, redact_url(resp.url))

        scheme, _ = self._select_challenge(resp)
        match scheme:
            case "basic":
                return DispatchState.CHALLENGED_BASIC
            case "digest":
                return DispatchState.CHALLENGED_DIGEST
            case _:
                raise AuthenticationRejected(
                    resp.status,
                    f"{resp.reason} (unsupported authentication scheme {scheme})",
                    redact_url(resp.url),
                )

    def _select_challenge(self, resp: DavResponse) -> tuple[str, dict[str, str]]:
        """Return the challenge to answer among those of `resp`, preferring
        Digest over Basic.
        """
        values = resp.headers.getlist("WWW-Authenticate")
        if not values:
            raise MalformedChallenge(f"No WWW-Authenticate header in response from {redact_url(resp.url)}")

        challenges = [parse_challenge(value) for value in _split_challenges(values)]
        if not challenges:
            raise MalformedChallenge(f"Empty WWW-Authenticate header in response from {redact_url(resp.url)}")

        for scheme in ("digest", "basic"):
            for challenge in challenges:
                if challenge[0] == scheme:
                    return challenge

        return challenges[0]

    def _authenticate(self, request: DavRequest, resp: DavResponse, state: DispatchState) -> DavRequest:
        username = str(self._auth.username)
        password = self._auth.password or ""
        if state is DispatchState.CHALLENGED_BASIC:
            if self._auth.disable_basic_auth:
                raise BasicAuthDisabled(
                    f"Server of {redact_url(resp.url)} requested Basic authentication, but it is disabled"
                )
            return request.with_header("Authorization", make_basic_authorization(username, password))

        _, params = self._select_challenge(resp)
        authorization = make_digest_authorization(
            username,
            password,
            request.verb.method,
            request.path,
            params,
            self._auth.next_nonce_count(),
            self._auth.cnonce,
        )
        return request.with_header("Authorization", authorization)

    def _redirect(self, request: DavRequest, resp: DavResponse) -> DavRequest:
        if (location := resp.headers.get("Location")) is None:
            raise ProtocolError(
                resp.status, f"{resp.reason} (redirection without Location)", redact_url(resp.url)
            )

        # Relative locations are resolved against the URL of the request.
        try:
            target = urljoin(resp.url, location.strip())
            is_same_origin = same_origin(target, self._base_url)
        except ValueError as e:
            # urllib3 LocationParseError is a ValueError.
            raise ProtocolError(
                resp.status, f"{resp.reason} (invalid Location {location!r})", redact_url(resp.url)
            ) from e

        if not is_same_origin:
            raise CrossOriginRedirect(
                f"Refusing to follow redirection from {redact_url(resp.url)} to a different origin: "
                f"{redact_url(target)}"
            )

        parts = urlsplit(target)
        path = urlunsplit(("", "", parts.path or "/", parts.query, ""))
        log.debug("redirected from %s to %s", redact_url(resp.url), redact_url(target))

        # A digest response is bound to the URI of the request.
        redirected = request.with_path(path)
        if (redirected.get_header("Authorization") or "").startswith("Digest "):
            redirected = redirected.without_header("Authorization")

        return redirected
