"""Installation wizard: schema creation, seed data and the first administrator.

Every ORM table gets its own reversible `create_table` step, followed by the
seed steps. Each handler commits its own work so one request equals one step.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

import httpx
import structlog
from sqlalchemy import Table, insert, inspect
from sqlalchemy.ext.asyncio import AsyncSession

from agora.auth.password import generate_auth_key, generate_password, hash_password
from agora.auth.rbac import ROLE_ADMIN, assign, seed_rules
from agora.cache import Cache
from agora.config import Settings, get_settings
from agora.config_store import CACHE_KEY, DEFAULTS
from agora.database import connection_of
from agora.db.base import Base
from agora.db.models import ROLE_ADMIN as USER_ROLE_ADMIN
from agora.db.models import STATUS_ACTIVE, Config, Content, User
from agora.forum.content import DEFAULT_CONTENT
from agora.i18n import t
from agora.maintenance.steps import ProgressState, Step, StepOutcome, StepResult, StepRunner

logger = structlog.get_logger()

DEFAULT_USERNAME = "admin"
DEFAULT_TIMEZONE = "UTC"

IdentityLookup = Callable[[int], Awaitable[Any]]


async def fetch_host_identity(identity_id: int, settings: Settings | None = None) -> dict[str, Any] | None:
    """Look up an account of the host application over HTTP."""
    settings = settings or get_settings()
    if not settings.identity_url:
        return None
    url = f"{settings.identity_url.rstrip('/')}/{identity_id}"
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(url)
    if response.status_code == 404:  # noqa: PLR2004
        return None
    response.raise_for_status()
    return response.json()


def build_steps() -> list[Step]:
    """Table steps in dependency order, then the seed steps."""
    steps = [
        Step(name=f"create_{table.name}", table=table.name, call="create_table", payload={"table": table.name})
        for table in Base.metadata.sorted_tables
    ]
    steps += [
        Step(name="add_config", table=Config.__tablename__, call="add_config"),
        Step(name="add_content", table=Content.__tablename__, call="add_content"),
        Step(name="add_rules", table="agora_auth_item", call="add_rules"),
        Step(name="add_admin", table=User.__tablename__, call="add_admin"),
    ]
    return steps


class Installation:
    """Installation wizard bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        cache: Cache | None = None,
        settings: Settings | None = None,
        identity_lookup: IdentityLookup | None = None,
    ) -> None:
        self._db = db
        self._cache = cache
        self._settings = settings or get_settings()
        self._identity_lookup = identity_lookup or partial(fetch_host_identity, settings=self._settings)
        self.steps = build_steps()
        self.runner = StepRunner(
            {
                "create_table": self.create_table,
                "drop_table": self.drop_table,
                "add_config": self.add_config,
                "add_content": self.add_content,
                "add_rules": self.add_rules,
                "add_admin": self.add_admin,
            },
            missing_message="install.step_missing",
            complete_message="install.already_complete",
            drop_missing_message="install.drop_missing",
        )

    async def next_step(self, progress: ProgressState) -> StepResult:
        await connection_of(self._db)
        if progress.mode != "forward":
            progress.reset()
        return await self.runner.advance(self.steps, progress)

    async def next_drop(self, progress: ProgressState) -> StepResult:
        await connection_of(self._db)
        return await self.runner.drop(self.steps, progress)

    # -- schema ---------------------------------------------------------------

    @staticmethod
    def _table(step: Step) -> Table:
        return Base.metadata.tables[step.payload["table"]]

    async def _has_table(self, name: str) -> bool:
        conn = await self._db.connection()
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(name))

    async def create_table(self, step: Step) -> StepOutcome:
        table = self._table(step)
        try:
            if await self._has_table(table.name):
                return StepOutcome.warning(t("install.table_exists", table=table.name))
            conn = await self._db.connection()
            await conn.run_sync(table.create)
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("table_create_failed", table=table.name)
            return StepOutcome.error(f"{t('install.table_create_error', table=table.name)}: {e}")
        return StepOutcome.success(t("install.table_created", table=table.name))

    async def drop_table(self, step: Step) -> StepOutcome:
        table = self._table(step)
        try:
            if not await self._has_table(table.name):
                return StepOutcome.success(t("install.table_missing", table=table.name))
            conn = await self._db.connection()
            await conn.run_sync(table.drop)
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("table_drop_failed", table=table.name)
            return StepOutcome.error(f"{t('install.table_drop_error', table=table.name)}: {e}")
        return StepOutcome.success(t("install.table_dropped", table=table.name))

    # -- seed data ------------------------------------------------------------

    async def add_config(self, step: Step) -> StepOutcome:
        values = dict(DEFAULTS, version=self._settings.app_version)
        try:
            await self._db.execute(insert(Config), [{"name": k, "value": v} for k, v in values.items()])
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("config_seed_failed")
            return StepOutcome.error(f"{t('install.config_error')}: {e}")
        if self._cache is not None:
            await self._cache.delete(CACHE_KEY)
        return StepOutcome.success(t("install.config_added"))

    async def add_content(self, step: Step) -> StepOutcome:
        rows = [{"name": name, **texts} for name, texts in DEFAULT_CONTENT.items()]
        try:
            await self._db.execute(insert(Content), rows)
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("content_seed_failed")
            return StepOutcome.error(f"{t('install.content_error')}: {e}")
        return StepOutcome.success(t("install.content_added"))

    async def add_rules(self, step: Step) -> StepOutcome:
        try:
            await seed_rules(self._db)
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("rules_seed_failed")
            return StepOutcome.error(f"{t('install.rules_error')}: {e}")
        return StepOutcome.success(t("install.rules_added"))

    async def add_admin(self, step: Step) -> StepOutcome:
        if not self._settings.user_component:
            return await self.add_inherited_admin(step)

        password = generate_password()
        try:
            admin = User(
                username=DEFAULT_USERNAME,
                status=STATUS_ACTIVE,
                role=USER_ROLE_ADMIN,
                timezone=DEFAULT_TIMEZONE,
                auth_key=generate_auth_key(),
                password_hash=hash_password(password),
            )
            self._db.add(admin)
            await self._db.flush()
            if not await assign(self._db, ROLE_ADMIN, admin.id):
                raise ValueError(t("install.privileges_error"))
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("admin_create_failed")
            return StepOutcome.error(f"{t('install.admin_error')}: {e}")

        logger.info("admin_created", user_id=admin.id)
        return StepOutcome.success(t("install.admin_created", login=DEFAULT_USERNAME, password=password))

    async def add_inherited_admin(self, step: Step) -> StepOutcome:
        admin_id = self._settings.admin_id
        if not admin_id:
            return StepOutcome.warning(t("install.no_admin_id"))

        try:
            identity = await self._identity_lookup(admin_id)
        except Exception:
            logger.warning("identity_lookup_failed", admin_id=admin_id, exc_info=True)
            identity = None
        if not identity:
            return StepOutcome.warning(t("install.no_inherited_user"))

        try:
            admin = User(
                inherited_id=admin_id,
                username=DEFAULT_USERNAME,
                status=STATUS_ACTIVE,
                role=USER_ROLE_ADMIN,
                timezone=DEFAULT_TIMEZONE,
            )
            self._db.add(admin)
            await self._db.flush()
            if not await assign(self._db, ROLE_ADMIN, admin.id):
                raise ValueError(t("install.privileges_error"))
            await self._db.commit()
        except Exception as e:
            await self._db.rollback()
            logger.exception("inherited_admin_failed", admin_id=admin_id)
            return StepOutcome.error(f"{t('install.admin_error')}: {e}")

        return StepOutcome.success(t("install.inherited_admin_set", id=admin_id))
