from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select

from src.db.models.security import Permission, Role, RolePermission, User, UserRole
from .base import BaseRepository


class SecurityRepository(BaseRepository):
    """Repository for users, roles and permission lookups within a tenant."""

    # Users
    async def get_user_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(User.email == email)
        return await self.scalar_one_or_none(stmt)

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        return await self.scalar_one_or_none(stmt)

    async def count_users(self) -> int:
        stmt = select(func.count(User.id))
        result = await self.execute(stmt)
        return int(result.scalar_one())

    async def create_user(
        self,
        *,
        email: str,
        full_name: Optional[str],
        hashed_password: str,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email,
            full_name=full_name,
            hashed_password=hashed_password,
            is_active=is_active,
        )
        await self.add(user)
        await self.commit()
        return (await self.get_user_by_email(email))  # type: ignore

    async def list_roles_for_user(self, user_id: UUID) -> List[Role]:
        stmt = (
            select(Role)
            .join(UserRole, Role.id == UserRole.role_id)
            .where(UserRole.user_id == user_id)
        )
        result = await self.scalars(stmt)
        return list(result)

    async def list_permission_codes_for_user(self, user_id: UUID) -> List[str]:
        stmt = (
            select(Permission.code)
            .join(RolePermission, Permission.id == RolePermission.permission_id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .where(UserRole.user_id == user_id)
            .distinct()
        )
        result = await self.scalars(stmt)
        return list(result)

    # Roles
    async def get_role_by_name(self, name: str) -> Optional[Role]:
        stmt = select(Role).where(Role.name == name)
        return await self.scalar_one_or_none(stmt)

    async def create_role(self, name: str, description: Optional[str] = None) -> Role:
        role = Role(name=name, description=description)
        await self.add(role)
        await self.commit()
        return (await self.get_role_by_name(name))  # type: ignore

    async def assign_role_to_user(self, user_id: UUID, role_id: UUID) -> None:
        assoc = UserRole(user_id=user_id, role_id=role_id)
        await self.add(assoc)
        await self.commit()
