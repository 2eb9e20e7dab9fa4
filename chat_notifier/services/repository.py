from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import asyncpg  # type: ignore[import-untyped]

from chat_notifier.core.config import get_settings

POLICY_SETTING_KEY = "chat_notification_settings"


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str


@dataclass(slots=True)
class NotificationContext:
    """What a chat notification email needs to know about its recipient and thread."""

    recipient_id: str
    recipient_email: str | None
    recipient_username: str | None
    employer_name: str | None
    job_title: str | None


class PostgresRepository:
    """Read side of the chat tables plus the key/value ``settings`` table.

    Messages belong to a job application (the conversation); the employer is
    the owner of the application's job post and the seeker is the applicant.
    """

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    async def get_setting(self, key: str) -> str | None:
        pool = await self._get_pool()
        return await pool.fetchval("select value from settings where key = $1", key)

    async def upsert_setting(self, key: str, value: str) -> None:
        if not key.strip():
            raise RepositoryValidationError("setting key must be a non-empty string")

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.execute(
                    "update settings set value = $2 where key = $1",
                    key,
                    value,
                )
                # asyncpg returns the command tag, e.g. "UPDATE 0".
                if updated.endswith(" 0"):
                    await conn.execute(
                        "insert into settings (id, key, value) values (gen_random_uuid(), $1, $2)",
                        key,
                        value,
                    )

    async def count_messages(self, conversation_id: str) -> int:
        pool = await self._get_pool()
        count = await pool.fetchval(
            "select count(*) from messages where job_application_id = $1::uuid",
            conversation_id,
        )
        return int(count or 0)

    async def count_unread(self, conversation_id: str, recipient_id: str) -> int:
        pool = await self._get_pool()
        count = await pool.fetchval(
            """
            select count(*)
            from messages
            where job_application_id = $1::uuid
              and recipient_id = $2::uuid
              and sender_id <> $2::uuid
              and is_read = false
            """,
            conversation_id,
            recipient_id,
        )
        return int(count or 0)

    async def get_notification_context(
        self,
        conversation_id: str,
        recipient_id: str,
    ) -> NotificationContext | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              recipient.id::text as recipient_id,
              recipient.email as recipient_email,
              recipient.username as recipient_username,
              employer.username as employer_name,
              jp.title as job_title
            from job_applications ja
            join users recipient on recipient.id = $2::uuid
            left join job_posts jp on jp.id = ja.job_post_id
            left join users employer on employer.id = jp.employer_id
            where ja.id = $1::uuid
            """,
            conversation_id,
            recipient_id,
        )
        if row is None:
            return None
        return NotificationContext(
            recipient_id=row["recipient_id"],
            recipient_email=self._coerce_text(row["recipient_email"]),
            recipient_username=self._coerce_text(row["recipient_username"]),
            employer_name=self._coerce_text(row["employer_name"]),
            job_title=self._coerce_text(row["job_title"]),
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CN_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _coerce_text(value: object) -> str | None:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return None


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
