"""hsmd backend loader.

The backend module is chosen by name so a native implementation can be
dropped in without touching the Signer:

    GL_HSMD_MODULE=mypackage.native_hsmd

The module must expose ``create_backend(seed, network) -> HsmdBackend``.
"""

import importlib
import logging
from types import ModuleType
from typing import Optional

from glclient.config import get_settings
from glclient.errors import HsmdLoadError
from glclient.hsmd.base import HsmdBackend
from glclient.network import Network

logger = logging.getLogger(__name__)

_module_cache: dict[str, ModuleType] = {}


def get_backend_module(name: Optional[str] = None) -> ModuleType:
    """Import (once) and validate the configured backend module.

    Args:
        name: Dotted module name (defaults to GL_HSMD_MODULE)

    Returns:
        The imported module

    Raises:
        HsmdLoadError: If the module is missing or lacks create_backend
    """
    name = name or get_settings().hsmd_module

    if name in _module_cache:
        return _module_cache[name]

    try:
        module = importlib.import_module(name)
    except ImportError as e:
        raise HsmdLoadError(f"Cannot import hsmd module {name}: {e}") from e

    if not callable(getattr(module, "create_backend", None)):
        raise HsmdLoadError(f"hsmd module {name} does not define create_backend()")

    logger.debug(f"Loaded hsmd module {name} from {getattr(module, '__file__', '?')}")
    _module_cache[name] = module
    return module


def load_backend(seed: bytes, network: Network, module: Optional[str] = None) -> HsmdBackend:
    """Create a backend for the given seed and network."""
    backend = get_backend_module(module).create_backend(seed, network)
    if not isinstance(backend, HsmdBackend):
        raise HsmdLoadError(
            f"create_backend() returned {type(backend).__name__}, expected HsmdBackend"
        )
    return backend


def backend_module_path(module: Optional[str] = None) -> str:
    """Return the file the backend module was loaded from (for diagnostics)."""
    loaded = get_backend_module(module)
    path = getattr(loaded, "__file__", None)
    if not path:
        raise HsmdLoadError(f"hsmd module {loaded.__name__} has no file location")
    return path


def reset_backend_cache():
    """Forget loaded modules (for testing)."""
    _module_cache.clear()
