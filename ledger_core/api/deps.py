"""
Ledger system dependency for the API routers
"""

import threading
from typing import Optional

from ..system import LedgerSystem


_ledger_system: Optional[LedgerSystem] = None
_lock = threading.Lock()


def get_ledger_system() -> LedgerSystem:
    """Process-wide ledger system, created from configuration on first use"""
    global _ledger_system
    if _ledger_system is None:
        with _lock:
            if _ledger_system is None:
                _ledger_system = LedgerSystem(configure_logging=True)
    return _ledger_system
