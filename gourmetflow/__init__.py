"""
                GourmetFlow Offline Sync

Offline-first order and customer capture for restaurant terminals.
Records created while the device is disconnected are persisted locally
and pushed to the remote backend when connectivity returns.

Author: GourmetFlow Team
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "GourmetFlow Team"
