"""Tako: take container image.

A publisher signs image versions into a server directory; clients pinned to
the publisher's Ed25519 public key fetch the newest trusted version, verify
it, install it atomically, and restart dependent units.
"""

__version__ = "0.1.0"
__description__ = "Signed, versioned image distribution with atomic installs"

from tako.core.fetch import Fetcher, fetch
from tako.core.store import store
from tako.core.version import Version

__all__ = ["Fetcher", "Version", "fetch", "store", "__version__"]
