"""Low-level signing backends (hsmd).

The Signer delegates key derivation and signing to a backend module
loaded by name, see ``glclient.hsmd.factory``.
"""

from glclient.hsmd.base import HsmdBackend
from glclient.hsmd.factory import backend_module_path, load_backend

__all__ = [
    "HsmdBackend",
    "backend_module_path",
    "load_backend",
]
