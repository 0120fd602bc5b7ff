"""Bridge layer between Tako's core and the outside world.

Modules
-------
crypto_bridge
    Ed25519 signing and verification through PyNaCl.  The only module that
    touches ``nacl``.
transport
    Reads a remote server directory over HTTP(S) (``requests``) or from a
    ``file://`` path.
restart
    Restarts service units after an install (``systemctl restart`` by
    default).

The core engines depend on the ``Transport`` and ``Restarter`` protocols,
so tests substitute in-memory backends.
"""
