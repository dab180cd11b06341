"""
JSON API for managing proxy hosts.
Every mutation goes through the Reconciler so Caddy always reflects the stored hosts.
"""
from fastapi import APIRouter, Depends, Header, Query, Request

from caddy_panel.schemas import AuditLogOut, ProxyHostIn, ProxyHostOut, ProxyHostUpdate, ToggleIn
from caddy_panel.services.audit import SYSTEM_USER_ID
from caddy_panel.services.reconciler import Reconciler

router = APIRouter(prefix="/api")


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def _user(x_user_id: int | None) -> int:
    return SYSTEM_USER_ID if x_user_id is None else x_user_id


def _cert(cert) -> dict | None:
    return cert.to_dict() if cert is not None else None


@router.get("/hosts", response_model=list[ProxyHostOut])
async def list_hosts(certificates: bool = True, reconciler: Reconciler = Depends(get_reconciler)):
    rows = await reconciler.list_hosts(load_certificates=certificates)
    return [ProxyHostOut.from_host(host, _cert(cert)) for host, cert in rows]


@router.get("/hosts/{host_id}", response_model=ProxyHostOut)
async def get_host(host_id: int, reconciler: Reconciler = Depends(get_reconciler)):
    host, cert = await reconciler.get_host(host_id)
    return ProxyHostOut.from_host(host, _cert(cert))


@router.post("/hosts", response_model=ProxyHostOut, status_code=201)
async def create_host(body: ProxyHostIn, reconciler: Reconciler = Depends(get_reconciler),
                      x_user_id: int | None = Header(None)):
    """Create a host and publish the new configuration. Nothing is stored if Caddy rejects it."""
    host = await reconciler.create_host(body, _user(x_user_id))
    return ProxyHostOut.from_host(host)


@router.put("/hosts/{host_id}", response_model=ProxyHostOut)
async def update_host(host_id: int, body: ProxyHostUpdate, reconciler: Reconciler = Depends(get_reconciler),
                      x_user_id: int | None = Header(None)):
    host = await reconciler.update_host(host_id, body, _user(x_user_id))
    return ProxyHostOut.from_host(host)


@router.delete("/hosts/{host_id}")
async def delete_host(host_id: int, reconciler: Reconciler = Depends(get_reconciler),
                      x_user_id: int | None = Header(None)):
    deleted = await reconciler.delete_host(host_id, _user(x_user_id))
    return {"deleted": deleted}


@router.post("/hosts/{host_id}/toggle", response_model=ProxyHostOut)
async def toggle_host(host_id: int, body: ToggleIn | None = None, reconciler: Reconciler = Depends(get_reconciler),
                      x_user_id: int | None = Header(None)):
    """Flip a host on or off. Pass {"enabled": bool} to set the state explicitly."""
    enabled = body.enabled if body is not None else None
    host = await reconciler.toggle_host(host_id, _user(x_user_id), enabled=enabled)
    return ProxyHostOut.from_host(host)


@router.post("/reconcile")
async def reconcile(reconciler: Reconciler = Depends(get_reconciler)):
    return await reconciler.reconcile()


@router.get("/status")
async def caddy_status(reconciler: Reconciler = Depends(get_reconciler)):
    status = await reconciler.status()
    return status.to_dict()


@router.get("/certificates/{domain}")
async def certificate(domain: str, reconciler: Reconciler = Depends(get_reconciler)):
    cert = await reconciler.certificate(domain)
    return {"domain": domain, "certificate": _cert(cert)}


@router.get("/dashboard")
async def dashboard(reconciler: Reconciler = Depends(get_reconciler)):
    data = await reconciler.dashboard()
    data["recent_activity"] = [AuditLogOut.model_validate(entry) for entry in data["recent_activity"]]
    return data


@router.get("/audit-logs", response_model=list[AuditLogOut])
async def audit_logs(limit: int = Query(100, ge=1, le=1000), host_id: int | None = None,
                     reconciler: Reconciler = Depends(get_reconciler)):
    entries = await reconciler.list_audit_logs(limit=limit, host_id=host_id)
    return [AuditLogOut.model_validate(entry) for entry in entries]
