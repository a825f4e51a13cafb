"""
Activation Toggle

Flips a template between Active and Inactive. Both directions are always
allowed and there is no terminal state. Schedule fields are never touched:
a reactivated template picks up from its existing last_processed.
"""

from typing import Optional

import structlog

from src.audit.logger import AuditLogger
from src.services.storage.interface import NotFoundError, TemplateStoreInterface


logger = structlog.get_logger(__name__)


class ActivationToggle:
    """Sets the user-controlled active flag of a template."""

    def __init__(
        self,
        template_store: TemplateStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._templates = template_store
        self._audit_logger = audit_logger

    async def set_active(self, template_id: str, active: bool) -> None:
        """
        Set the active flag.

        Raises:
            NotFoundError: If no template has this ID
            PersistenceError: If the write fails
        """
        if await self._templates.get_template(template_id) is None:
            raise NotFoundError(f"Template not found: {template_id}")

        await self._templates.update_template_active(template_id, active)
        logger.info("template_activation_changed", template_id=template_id, active=active)

        if self._audit_logger:
            await self._audit_logger.log_activation_changed(template_id, active)
