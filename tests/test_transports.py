# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

import io
import unittest
import unittest.mock

import requests
import responses
import urllib3
from urllib3 import HTTPResponse, PoolManager

from netdav._transports import (
    DavRequest,
    DavStreamBody,
    RequestsTransport,
    TransportKind,
    Urllib3Transport,
    Verb,
    make_transport,
)
from netdav._transports._urllib3Transport import _CheckedHTTPSConnection
from netdav.davutils import DavConfig
from netdav.errors import TransportError

BASE_URL = "https://dav.example.org/base/"


def make_response(body=b"", status=200, headers=None):
    return HTTPResponse(body=io.BytesIO(body), headers=headers or {}, status=status, preload_content=False)


class MakeTransportTestCase(unittest.TestCase):
    """Test the selection of transports."""

    def test_make_transport(self):
        self.assertIsInstance(make_transport(BASE_URL, DavConfig()), Urllib3Transport)
        config = DavConfig({"transport": "requests"})
        self.assertIsInstance(make_transport(BASE_URL, config), RequestsTransport)
        transport = make_transport(BASE_URL, DavConfig(), TransportKind.REQUESTS)
        self.assertIsInstance(transport, RequestsTransport)
        self.assertIsInstance(make_transport(BASE_URL, DavConfig(), "urllib3"), Urllib3Transport)

        with self.assertRaises(ValueError):
            make_transport(BASE_URL, DavConfig(), "curl")

    def test_origin(self):
        transport = make_transport("davs://dav.example.org:1234/a/b/", DavConfig())
        self.assertEqual(transport.origin, "https://dav.example.org:1234")


class Urllib3TransportTestCase(unittest.TestCase):
    """Test the transport based on urllib3."""

    def setUp(self):
        self.transport = Urllib3Transport(BASE_URL, DavConfig())

    def tearDown(self):
        self.transport.close()

    def test_send(self):
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response(b"<xml/>", 207, {"Content-Type": "text/xml"})
            resp = self.transport.send(DavRequest(Verb.PROPFIND, "/base/", {"Depth": "1"}, "<body/>"))

        self.assertEqual(resp.status, 207)
        self.assertEqual(resp.reason, "Multi-Status")
        self.assertEqual(resp.headers["content-type"], "text/xml")
        self.assertEqual(resp.data, b"<xml/>")
        self.assertEqual(resp.url, "https://dav.example.org/base/")

        args, kwargs = mock_request.call_args
        self.assertEqual(args, ("PROPFIND", "https://dav.example.org/base/"))
        self.assertEqual(kwargs["body"], b"<body/>")
        self.assertEqual(kwargs["headers"]["Depth"], "1")
        self.assertIs(kwargs["redirect"], False)
        self.assertIs(kwargs["preload_content"], True)
        self.assertEqual(kwargs["retries"].total, 0)

    def test_redirect_not_followed(self):
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response(status=302, headers={"Location": "/elsewhere"})
            resp = self.transport.send(DavRequest(Verb.GET, "/base/file"))

        self.assertEqual(resp.status, 302)
        self.assertEqual(resp.headers["Location"], "/elsewhere")
        self.assertEqual(mock_request.call_count, 1)

    def test_send_streaming_out(self):
        received = []
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response(b"x" * 1000)
            resp = self.transport.send_streaming_out(DavRequest(Verb.GET, "/base/file"), received.append)

        self.assertEqual(resp.status, 200)
        self.assertEqual(b"".join(received), b"x" * 1000)
        self.assertIs(mock_request.call_args.kwargs["preload_content"], False)

    def test_send_streaming_out_not_delivered(self):
        received = []
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response(b"denied", 401)
            self.transport.send_streaming_out(
                DavRequest(Verb.GET, "/base/file"), received.append, deliver=lambda resp: resp.is_success
            )

        self.assertEqual(received, [])

    def test_send_streaming_in(self):
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response(status=201)
            body = DavStreamBody(io.BytesIO(b"0123456789"), 4)
            resp = self.transport.send(DavRequest(Verb.PUT, "/base/file", body=body))

        self.assertEqual(resp.status, 201)
        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["headers"]["Content-Length"], "4")
        self.assertEqual(kwargs["body"].read(), b"0123")

    def test_send_empty_stream(self):
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response(status=201)
            self.transport.send(DavRequest(Verb.PUT, "/base/file", body=DavStreamBody(io.BytesIO(), 0)))

        kwargs = mock_request.call_args.kwargs
        self.assertEqual(kwargs["headers"]["Content-Length"], "0")
        self.assertEqual(kwargs["body"], b"")

    def test_transport_error(self):
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.side_effect = urllib3.exceptions.ProtocolError("Connection aborted.")
            with self.assertRaises(TransportError) as cm:
                self.transport.send(DavRequest(Verb.GET, "/base/file"))

        self.assertIsInstance(cm.exception, OSError)

    def test_timeouts(self):
        self.transport.timeout_connect = 3
        self.transport.timeout_read = 7
        with unittest.mock.patch.object(PoolManager, "request") as mock_request:
            mock_request.return_value = make_response()
            self.transport.send(DavRequest(Verb.DELETE, "/base/file"))

        timeout = mock_request.call_args.kwargs["timeout"]
        self.assertEqual(timeout.connect_timeout, 3)
        self.assertEqual(timeout.read_timeout, 7)

    def test_session(self):
        self.assertFalse(self.transport.is_open)
        with self.transport:
            self.assertTrue(self.transport.is_open)
            self.assertEqual(self.transport._session.connection_pool_kw["cert_reqs"], "CERT_REQUIRED")

            # Changing TLS settings closes the session.
            self.transport.verify_server = False
            self.assertFalse(self.transport.is_open)

            self.transport.open()
            self.assertEqual(self.transport._session.connection_pool_kw["cert_reqs"], "CERT_NONE")

        self.assertFalse(self.transport.is_open)

    def test_verify_callback(self):
        self.transport.verify_callback = lambda certificate: True
        self.transport.open()
        pool = self.transport._session.connection_from_url(self.transport.origin)
        self.assertIs(pool.ConnectionCls.func, _CheckedHTTPSConnection)

        transport = Urllib3Transport("http://dav.example.org/", DavConfig())
        transport.verify_callback = lambda certificate: True
        with self.assertLogs("netdav", level="WARNING"):
            transport.open()

        transport.close()

    def test_missing_trusted_authorities(self):
        transport = Urllib3Transport(BASE_URL, DavConfig({"trusted_authorities": "/this/does/not/exist"}))
        with self.assertRaises(FileNotFoundError):
            transport.open()


class RequestsTransportTestCase(unittest.TestCase):
    """Test the transport based on requests."""

    def setUp(self):
        self.transport = RequestsTransport(BASE_URL, DavConfig({"transport": "requests"}))

    def tearDown(self):
        self.transport.close()

    @responses.activate
    def test_send(self):
        responses.add("PROPFIND", "https://dav.example.org/base/", body=b"<xml/>", status=207)
        resp = self.transport.send(DavRequest(Verb.PROPFIND, "/base/", {"Depth": "1"}, "<body/>"))

        self.assertEqual(resp.status, 207)
        self.assertEqual(resp.data, b"<xml/>")
        self.assertEqual(len(responses.calls), 1)

        request = responses.calls[0].request
        self.assertEqual(request.method, "PROPFIND")
        self.assertEqual(request.headers["Depth"], "1")
        self.assertEqual(request.body, b"<body/>")

    @responses.activate
    def test_redirect_not_followed(self):
        responses.add(
            responses.GET, "https://dav.example.org/base/file", status=302, headers={"Location": "/x"}
        )
        responses.add(responses.GET, "https://dav.example.org/x", status=200)
        resp = self.transport.send(DavRequest(Verb.GET, "/base/file"))

        self.assertEqual(resp.status, 302)
        self.assertEqual(resp.headers["Location"], "/x")
        self.assertEqual(len(responses.calls), 1)

    @responses.activate
    def test_send_streaming_out(self):
        responses.add(responses.GET, "https://dav.example.org/base/file", body=b"y" * 5000)
        received = []
        resp = self.transport.send_streaming_out(DavRequest(Verb.GET, "/base/file"), received.append)

        self.assertEqual(resp.status, 200)
        self.assertEqual(b"".join(received), b"y" * 5000)

    @responses.activate
    def test_transport_error(self):
        responses.add(
            responses.GET, "https://dav.example.org/base/file", body=requests.ConnectionError("refused")
        )
        with self.assertRaises(TransportError):
            self.transport.send(DavRequest(Verb.GET, "/base/file"))

    def test_session(self):
        self.transport.verify_server = False
        with self.transport:
            self.assertIs(self.transport._session.verify, False)

        self.assertFalse(self.transport.is_open)

    def test_verify_callback_ignored(self):
        self.transport.verify_callback = lambda certificate: True
        with self.assertLogs("netdav", level="WARNING"):
            self.transport.open()


if __name__ == "__main__":
    unittest.main()
