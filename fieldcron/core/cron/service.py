"""CronService: create / update / delete / list crons with ownership checks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fieldcron.core.cron.types import CronCreate, CronPatch, CronTask
from fieldcron.core.errors import NotAuthorizedError, NotFoundError, ValidationError

if TYPE_CHECKING:
    from fieldcron.storage.store import SQLiteStore


def _parse(model: type[BaseModel], data: BaseModel | dict[str, Any]) -> Any:
    """Validate ``data`` into ``model``, raising the domain ValidationError."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'cron'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(problems) from e


class CronService:
    """CRUD boundary over the crons table.

    Only the owner or an admin may read, change or delete a cron. Run state
    is never writable here.
    """

    def __init__(self, db: SQLiteStore):
        self.db = db

    def create_cron(self, user_id: str, data: CronCreate | dict[str, Any]) -> CronTask:
        cron = self.db.add_cron(user_id, _parse(CronCreate, data))
        logger.info(f"Cron created: {cron.cron_id} for {user_id}")
        return cron

    def get_cron(
        self, cron_id: int, user_id: str | None = None, is_admin: bool = True
    ) -> CronTask:
        """Fetch a non-deleted cron. Raises NotFoundError / NotAuthorizedError."""
        cron = self.db.get_cron(cron_id)
        if cron is None:
            raise NotFoundError("Cron", cron_id)
        if not is_admin and cron.user_id != user_id:
            raise NotAuthorizedError(f"You do not have permission to access cron {cron_id}")
        return cron

    def list_crons(self, user_id: str | None = None) -> list[CronTask]:
        """One user's crons, or every cron when ``user_id`` is None."""
        return self.db.list_crons(user_id)

    def update_cron(
        self,
        cron_id: int,
        patch: CronPatch | dict[str, Any],
        user_id: str | None = None,
        is_admin: bool = True,
    ) -> CronTask:
        """Apply only the fields set in ``patch``; the merged cron is re-validated."""
        patch = _parse(CronPatch, patch)
        cron = self.get_cron(cron_id, user_id, is_admin)
        changes = patch.changes()
        if not changes:
            return cron

        merged = cron.model_dump(include=set(CronCreate.model_fields)) | changes
        validated = _parse(CronCreate, merged)
        updated = self.db.update_cron(
            cron_id, {name: getattr(validated, name) for name in changes}
        )
        if updated is None:
            raise NotFoundError("Cron", cron_id)
        logger.info(f"Cron updated: {cron_id} ({', '.join(changes)})")
        return updated

    def soft_delete_cron(
        self, cron_id: int, user_id: str | None = None, is_admin: bool = True
    ) -> None:
        self.get_cron(cron_id, user_id, is_admin)
        self.db.soft_delete_cron(cron_id)
        logger.info(f"Cron deleted: {cron_id}")

    def list_runs(
        self,
        cron_id: int,
        user_id: str | None = None,
        is_admin: bool = True,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Recent dispatcher runs of a cron, newest first."""
        self.get_cron(cron_id, user_id, is_admin)
        return self.db.get_cron_runs(cron_id, limit)

    def delete_user(self, user_id: str) -> bool:
        """Delete a user; their crons are soft-deleted in the same step."""
        if not self.db.user_exists(user_id):
            raise NotFoundError("User", user_id)
        deleted = self.db.delete_user(user_id)
        logger.info(f"User deleted: {user_id} (crons soft-deleted)")
        return deleted
