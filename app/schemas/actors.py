"""Actor schema."""

from pydantic import BaseModel

from app.core.permissions import Role


class Actor(BaseModel):
    """Authenticated party invoking a scheduling operation."""

    id: str
    role: Role
    user_agent: str | None = None

    model_config = {"frozen": True}
