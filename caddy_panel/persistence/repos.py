from sqlalchemy import select
from sqlalchemy.orm import Session
from caddy_panel.persistence.models import AuditLog, ProxyHost

# Repositories flush instead of committing: the surrounding DBSession owns the transaction.

class ProxyHostRepo:
    def __init__(self, db: Session): self.db = db
    def list_all(self) -> list[ProxyHost]:
        return list(self.db.scalars(select(ProxyHost).order_by(ProxyHost.created_at, ProxyHost.id)))
    def get(self, id: int) -> ProxyHost | None:
        return self.db.get(ProxyHost, id)
    def create(self, h: ProxyHost) -> ProxyHost:
        self.db.add(h); self.db.flush(); self.db.refresh(h); return h
    def update(self, h: ProxyHost) -> ProxyHost:
        self.db.add(h); self.db.flush(); self.db.refresh(h); return h
    def delete(self, id: int) -> bool:
        obj = self.get(id)
        if obj is None:
            return False
        self.db.delete(obj); self.db.flush()
        return True
    def restore(self, id: int, values: dict) -> ProxyHost:
        """Put a row back with its previous id and column values."""
        obj = self.get(id)
        if obj is None:
            obj = ProxyHost(id=id, **values)
            self.db.add(obj)
        else:
            for name, value in values.items():
                setattr(obj, name, value)
        self.db.flush()
        return obj

class AuditLogRepo:
    def __init__(self, db: Session): self.db = db
    def create(self, entry: AuditLog) -> AuditLog:
        self.db.add(entry); self.db.flush(); self.db.refresh(entry); return entry
    def list_recent(self, limit: int = 100) -> list[AuditLog]:
        return list(self.db.scalars(select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)))
    def list_for_entity(self, entity_type: str, entity_id: int, limit: int = 100) -> list[AuditLog]:
        stmt = (select(AuditLog).where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
                .order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit))
        return list(self.db.scalars(stmt))
