# multicloud/db/repositories/account_repository.py
"""
CRUD operations for Account model.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update
from multicloud.db.models import Account, Provider
from typing import Optional, List


class AccountRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **kwargs) -> Account:
        account = Account(**kwargs)
        self.db.add(account)
        await self.db.commit()
        await self.db.refresh(account)
        return account

    async def get(self, account_id: int) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def get_by_identity(self, user_id: int, provider: Provider, account_email: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(
                Account.user_id == user_id,
                Account.provider == provider,
                Account.account_email == account_email,
            )
        )
        return result.scalar_one_or_none()

    async def list_active_by_user(self, user_id: int) -> List[Account]:
        result = await self.db.execute(
            select(Account).where(Account.user_id == user_id, Account.is_active.is_(True)).order_by(Account.id)
        )
        return result.scalars().all()

    async def update(self, account: Account, **kwargs) -> Account:
        """Update non-credential fields. Token fields go through swap_tokens."""
        for key, value in kwargs.items():
            setattr(account, key, value)
        await self.db.commit()
        await self.db.refresh(account)
        return account

    async def swap_tokens(self, account: Account, access_token: str, refresh_token, token_expiry) -> bool:
        """Compare-and-swap the token triple against the version the caller loaded.

        Returns False (and leaves the row untouched) when another writer got there first.
        """
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.token_version == account.token_version)
            .values(
                access_token=access_token,
                refresh_token=refresh_token,
                token_expiry=token_expiry,
                token_version=Account.token_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Nothing was written; reload so the caller sees the winning token
            await self.db.refresh(account)
            return False
        await self.db.commit()
        await self.db.refresh(account)
        return True
