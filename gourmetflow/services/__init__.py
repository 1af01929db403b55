"""
                        Services Module

Offline store and synchronization, plus the external collaborators the
terminal talks to. Each collaborator has a Mock (development) and a Real
(production) implementation.

Services:
    - local_store: on-device records and sync queue
    - sync_engine: queue drainer with bounded retry
    - sync_driver: connectivity and timer triggers
    - remote: records API (mock / httpx)
    - whatsapp: WhatsApp bridge (mock / httpx)
    - payment: payment gateway (mock / Stripe)
"""

from gourmetflow.services.local_store import LocalStore, RecordKind
from gourmetflow.services.sync_engine import RetryPolicy, SyncEngine
from gourmetflow.services.sync_driver import SyncDriver

__all__ = ["LocalStore", "RecordKind", "RetryPolicy", "SyncEngine", "SyncDriver"]
