from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import transaction

from apps.fulfillment.domain.errors import DesignFileNotFoundError
from apps.fulfillment.models import DesignFile, DesignFileGrant

logger = logging.getLogger("storefront.fulfillment")


@dataclass(frozen=True)
class DeleteDesignFileCommand:
    design_file_id: int
    changed_by: str


class DeleteDesignFileUseCase:
    """Hard-deletes a design file together with every grant that references it."""

    @staticmethod
    @transaction.atomic
    def execute(cmd: DeleteDesignFileCommand) -> int:
        design_file = DesignFile.objects.select_for_update().filter(id=cmd.design_file_id).first()
        if design_file is None:
            raise DesignFileNotFoundError(f"Design file {cmd.design_file_id} not found.")

        grants = DesignFileGrant.objects.filter(design_file=design_file).count()
        design_file.delete()
        logger.info(
            "design_file_deleted",
            extra={"design_file_id": cmd.design_file_id, "grants_deleted": grants, "changed_by": cmd.changed_by},
        )
        return grants
