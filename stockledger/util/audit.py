import json
from sqlalchemy.orm import Session
from stockledger.models.core import AuditLog

def _dump(doc: dict | None) -> str | None:
    # Decimal / datetime go out as strings
    return json.dumps(doc, default=str, sort_keys=True) if doc else None

def audit(db: Session, actor_user_id: str | None, entity: str, entity_id: str,
          action: str, before: dict | None = None, after: dict | None = None, reason: str | None = None):
    entry = AuditLog(
        actor_user_id=actor_user_id or "system",
        entity=entity, entity_id=entity_id,
        action=action,
        reason=reason,
        before=_dump(before),
        after=_dump(after),
    )
    db.add(entry)
    return entry
