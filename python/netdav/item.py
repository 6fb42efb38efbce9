# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

from __future__ import annotations

__all__ = ("DavItem", "ItemKind")

import enum
import posixpath
import xml.etree.ElementTree as eTree
from datetime import datetime
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlsplit

from .davutils import redact_url

if TYPE_CHECKING:
    from .dav import DavClient


class ItemKind(enum.Enum):
    """Kind of resource an item stands for."""

    FILE = "file"
    COLLECTION = "collection"


class DavItem:
    """File or collection found by `DavClient.find`.

    The content and the properties of the resource are retrieved through
    the client which found it, only when asked for.

    Parameters
    ----------
    client : `DavClient`
        Client which found this item.
    uri : `str`
        Absolute URL of the resource.
    kind : `ItemKind`
        Kind of the resource.
    size : `int`, optional
        Size in bytes of the resource, if it is a file and the server
        reported it.
    display_name : `str`, optional
        Name the server reported for the resource. Defaults to `name`.
    last_modified : `datetime.datetime`, optional
        Last modification time the server reported for the resource.
    """

    def __init__(
        self,
        client: DavClient,
        uri: str,
        kind: ItemKind,
        size: int | None = None,
        *,
        display_name: str | None = None,
        last_modified: datetime | None = None,
    ) -> None:
        self._client = client
        self._uri = uri
        self._kind = kind
        self._size = size if kind is ItemKind.FILE else None
        self._display_name = display_name
        self._last_modified = last_modified if last_modified is not None else datetime.min
        self._content: bytes | None = None

    def __repr__(self) -> str:
        return f"DavItem({redact_url(self._uri)}, {self._kind.value})"

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def url(self) -> str:
        """Synonym of `uri`."""
        return self._uri

    @property
    def path(self) -> str:
        return urlsplit(self._uri).path or "/"

    @property
    def name(self) -> str:
        """Last segment of the path, percent-decoded."""
        return unquote(posixpath.basename(self.path.rstrip("/")))

    @property
    def display_name(self) -> str:
        return self._display_name or self.name

    @property
    def last_modified(self) -> datetime:
        """Last modification time, or `datetime.datetime.min` if the server
        did not report it.
        """
        return self._last_modified

    @property
    def kind(self) -> ItemKind:
        return self._kind

    @property
    def is_collection(self) -> bool:
        return self._kind is ItemKind.COLLECTION

    @property
    def size(self) -> int | None:
        return self._size

    @property
    def content(self) -> bytes:
        """Content of the resource. It is retrieved from the server the
        first time it is accessed and kept afterwards.
        """
        if self._content is None:
            self._content = self._client.get(self.path) or b""

        return self._content

    @content.setter
    def content(self, value: str | bytes) -> None:
        # Store first so that the cache never holds unsaved content.
        self._client.put(self.path, value)
        self._content = value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def properties(self) -> eTree.Element:
        """Return the 'multistatus' element listing all the properties of
        the resource.
        """
        return self._client.list_properties(self.path)

    def update_properties(self, fragment: str) -> eTree.Element | None:
        """Set properties of the resource. See
        `DavClient.update_properties`.
        """
        return self._client.update_properties(self.path, fragment)
