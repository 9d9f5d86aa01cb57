"""Runtime wiring for the kcert controller.

Public API::

    from kcert.app import Runtime
"""

from kcert.app.runtime import Runtime
from kcert.app.shutdown import ShutdownCoordinator

__all__ = ["Runtime", "ShutdownCoordinator"]
