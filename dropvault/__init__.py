"""Personal file vault core: upload lifecycle coordination and share links."""

from .config import DropVaultConfig  # noqa: F401
from .runtime import DropVaultRuntime  # noqa: F401
