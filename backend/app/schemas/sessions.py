"""Device session schemas."""
from app.schemas.common import CamelModel


class SessionInfo(CamelModel):
    id: str
    device_name: str | None = None
    location: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    last_active: str
    created_at: str
    is_current: bool = False


class RevokeRequest(CamelModel):
    expire_now: bool = False


class RevokeAllResponse(CamelModel):
    success: bool = True
    count: int
