from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_actor_id
from app.core.permissions import Role, normalize_role
from app.db.session import get_db


@dataclass(frozen=True, slots=True)
class ActorContext:
    """Who is calling. Authentication happens upstream; the gateway forwards identity headers."""

    actor_id: str
    role: Role
    name: str

    @property
    def label(self) -> str:
        return self.name or self.actor_id


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_actor(
    actor_id: str | None = Header(default=None, alias="X-Actor-ID"),
    actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
    actor_name: str | None = Header(default=None, alias="X-Actor-Name"),
) -> ActorContext:
    if not actor_id or not actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-ID and X-Actor-Role headers are required",
        )
    role = normalize_role(actor_role)
    set_actor_id(actor_id)
    return ActorContext(actor_id=actor_id, role=role, name=(actor_name or actor_id).strip())
