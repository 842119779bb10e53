"""
royalty_services.statement_export_service -- Statement document export.

Responsibility:
    Checks that a statement exists (and, for creator requests, that the
    creator owns it) before handing it to the DocumentRenderer.

Architecture position:
    Services -- thin shell over StatementService and the renderer
    collaborator.  Read-only; never commits.

Failure modes:
    - StatementNotFoundError for an unknown statement.
    - StatementAccessError when ``creator_id`` does not own the statement.
    - UnsupportedExportFormatError for a format outside SUPPORTED_FORMATS.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from royalty_kernel.exceptions import UnsupportedExportFormatError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.services.statement_service import StatementService
from royalty_services.collaborators import DocumentRenderer

logger = get_logger("services.statement_export")

SUPPORTED_FORMATS = ("pdf", "csv", "html")


class StatementExportService:
    def __init__(
        self,
        session: Session,
        renderer: DocumentRenderer,
        statements: StatementService | None = None,
    ):
        self._session = session
        self._renderer = renderer
        self._statements = statements or StatementService(session)

    def export(
        self,
        statement_id: UUID,
        fmt: str = "pdf",
        creator_id: str | None = None,
    ) -> bytes:
        fmt = (fmt or "").strip().lower()
        if fmt not in SUPPORTED_FORMATS:
            raise UnsupportedExportFormatError(fmt, SUPPORTED_FORMATS)

        if creator_id is not None:
            self._statements.verify_statement_ownership(statement_id, creator_id)
        else:
            self._statements.get_statement(statement_id)

        document = self._renderer.render_statement_document(statement_id, fmt)
        logger.info(
            "statement_exported",
            extra={
                "statement_id": str(statement_id),
                "format": fmt,
                "size_bytes": len(document),
            },
        )
        return document
