# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

import unittest
from datetime import datetime

import responses

from netdav import DavClient, DavConfig, DavItem, ItemKind, TransportKind

BASE_URL = "https://dav.example.org/a/"

PROPFIND_BODY = b"""<?xml version="1.0" encoding="utf-8"?>
<D:multistatus xmlns:D="DAV:">
    <D:response>
        <D:href>/a/my%20file.txt</D:href>
        <D:propstat>
            <D:prop><D:getcontentlength>5</D:getcontentlength></D:prop>
            <D:status>HTTP/1.1 200 OK</D:status>
        </D:propstat>
    </D:response>
</D:multistatus>
"""


class DavItemTestCase(unittest.TestCase):
    """Test the lazy accessors of items."""

    def setUp(self):
        self.client = DavClient(BASE_URL, DavConfig(), transport=TransportKind.REQUESTS)
        self.url = "https://dav.example.org/a/my%20file.txt"
        self.item = DavItem(self.client, self.url, ItemKind.FILE, 5)

    def tearDown(self):
        self.client.close()

    def test_attributes(self):
        self.assertEqual(self.item.uri, self.url)
        self.assertEqual(self.item.url, self.url)
        self.assertEqual(self.item.path, "/a/my%20file.txt")
        self.assertEqual(self.item.name, "my file.txt")
        self.assertEqual(self.item.kind, ItemKind.FILE)
        self.assertFalse(self.item.is_collection)
        self.assertEqual(self.item.size, 5)
        self.assertIn("my%20file.txt", repr(self.item))
        self.assertEqual(self.item.display_name, "my file.txt")
        self.assertEqual(self.item.last_modified, datetime.min)

        named = DavItem(
            self.client,
            self.url,
            ItemKind.FILE,
            display_name="Report",
            last_modified=datetime(2025, 3, 12, 10, 11, 13),
        )
        self.assertEqual(named.name, "my file.txt")
        self.assertEqual(named.display_name, "Report")
        self.assertEqual(named.last_modified, datetime(2025, 3, 12, 10, 11, 13))
        self.assertIsNone(named.size)

        collection = DavItem(self.client, "https://dav.example.org/a/b/", ItemKind.COLLECTION, 4096)
        self.assertEqual(collection.name, "b")
        self.assertTrue(collection.is_collection)
        self.assertIsNone(collection.size)

    @responses.activate
    def test_content_is_cached(self):
        responses.add(responses.GET, self.url, body=b"hello")

        self.assertEqual(self.item.content, b"hello")
        self.assertEqual(self.item.content, b"hello")
        self.assertEqual(len(responses.calls), 1)

    @responses.activate
    def test_content_write_through(self):
        responses.add(responses.PUT, self.url, status=201)

        self.item.content = "new content"
        self.assertEqual(len(responses.calls), 1)
        self.assertEqual(responses.calls[0].request.body, b"new content")

        # The value written is returned without reading it back.
        self.assertEqual(self.item.content, b"new content")
        self.assertEqual(len(responses.calls), 1)

    @responses.activate
    def test_failed_write_keeps_cache(self):
        responses.add(responses.GET, self.url, body=b"hello")
        responses.add(responses.PUT, self.url, status=403)

        self.assertEqual(self.item.content, b"hello")
        with self.assertRaises(Exception):
            self.item.content = b"rejected"

        self.assertEqual(self.item.content, b"hello")

    @responses.activate
    def test_properties(self):
        responses.add("PROPFIND", self.url, status=207, body=PROPFIND_BODY)
        responses.add("PROPPATCH", self.url, status=207, body=PROPFIND_BODY)

        root = self.item.properties()
        self.assertEqual(root.tag, "{DAV:}multistatus")
        self.assertEqual(root.find("./{DAV:}response/{DAV:}href").text, "/a/my%20file.txt")

        root = self.item.update_properties("<d:displayname>x</d:displayname>")
        self.assertEqual(root.tag, "{DAV:}multistatus")
        self.assertIn(b"<d:displayname>x</d:displayname>", responses.calls[1].request.body)


if __name__ == "__main__":
    unittest.main()
