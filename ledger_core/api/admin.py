"""
Admin endpoints (audit trail verification)
"""

from typing import Any, Dict
from fastapi import APIRouter, Depends

from .deps import get_ledger_system
from ..system import LedgerSystem


router = APIRouter()


@router.get("/audit/verify")
async def verify_audit_trail(system: LedgerSystem = Depends(get_ledger_system)) -> Dict[str, Any]:
    """Verify the hash chain of the audit trail"""
    return system.verify_audit_trail()


@router.get("/audit/{entity_type}/{entity_id}")
async def get_audit_events(
    entity_type: str,
    entity_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
) -> Dict[str, Any]:
    """Audit history of one entity, oldest first"""
    events = system.audit_trail.get_events_for_entity(entity_type, entity_id)
    return {
        "events": [
            {
                "id": e.id,
                "sequence": e.sequence,
                "event_type": e.event_type.value,
                "created_at": e.created_at.isoformat(),
                "user_id": e.user_id,
                "metadata": e.metadata
            }
            for e in events
        ]
    }
