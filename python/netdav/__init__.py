# This file is part of netdav.
#
# See the COPYRIGHT file at the top-level directory of this distribution
# for details of code ownership.
#
# Use of this source code is governed by a 3-clause BSD-style
# license that can be found in the LICENSE file.

"""WebDAV client with Basic and Digest authentication."""

from ._transports import BaseTransport, DavRequest, DavResponse, TransportKind, Verb
from .dav import DavClient, PropfindMode, start
from .davutils import DavConfig, DavConfigPool
from .errors import *
from .item import DavItem, ItemKind
from .pipeline import DavPipeline
from .version import *
