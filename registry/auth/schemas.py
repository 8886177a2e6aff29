from typing import Optional

from pydantic import BaseModel, Field


class CurrentActor(BaseModel):
    """Who is making the change. Its `changed_by` is written to every history event of the request."""

    subject: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    authenticated: bool = False

    @property
    def changed_by(self) -> Optional[str]:
        return self.username or self.email or self.subject


class AuthConfigResponse(BaseModel):
    enabled: bool
    issuer: Optional[str] = None
    client_id: Optional[str] = Field(None, alias="clientId")

    class Config:
        populate_by_name = True


class HealthResponse(BaseModel):
    status: str
    message: str
    auth_enabled: bool = Field(..., alias="authEnabled")

    class Config:
        populate_by_name = True
