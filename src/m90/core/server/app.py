"""M90 Treatment Tracker MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastmcp import FastMCP

from m90.core.audit.logger import AuditLogger
from m90.core.catalog.loader import load_catalog_directory
from m90.core.config.settings import get_settings
from m90.core.storage.database import TreatmentDatabase
from m90.core.storage.encryption import EncryptionError, FieldEncryptor
from m90.core.storage.repository import TreatmentRepository
from m90.domains.treatment.tools.metrics_preview_tools import (
    register_metrics_preview_tools,
)

logger = logging.getLogger(__name__)

# Bundled catalog YAML lives under src/m90/domains/treatment/catalog/
_CATALOG_DIR = Path(__file__).resolve().parent.parent.parent / "domains" / "treatment" / "catalog"


def create_app(
    *,
    repository_override: TreatmentRepository | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the treatment tracker MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Registers the storage-free metrics preview tool
    3. Initializes encrypted storage when an encryption key is configured
    4. Loads the package/clinic catalog into storage
    5. Registers patient, record and export tools plus catalog resources
    """
    settings = get_settings()

    server = FastMCP(
        "M90 Treatment Tracker",
        instructions=(
            "Treatment tracking for a fixed-duration medication package. "
            "Registers patients, logs medication applications, dosing phases, "
            "consultations, weigh-ins and stock adjustments, and reports "
            "per-patient progress metrics and risk alerts."
        ),
    )

    # --- Initialize storage ---
    repository: TreatmentRepository | None = None
    audit_logger: AuditLogger | None = audit_logger_override
    if repository_override is not None:
        repository = repository_override
    elif settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
            treatment_db = TreatmentDatabase(settings.db_path)
            treatment_db.initialize()
            repository = TreatmentRepository(treatment_db, encryptor)
            if audit_logger is None:
                audit_logger = AuditLogger(treatment_db)
            logger.info(
                "Treatment database ready: %s (schema v%d)",
                settings.db_path,
                treatment_db.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence — only metrics preview is available")
    else:
        logger.info(
            "No ENCRYPTION_KEY configured — running without persistence. "
            "Set ENCRYPTION_KEY to enable patient records."
        )

    packages_loaded = 0
    if repository is not None:
        catalog_dir = Path(settings.catalog_path).expanduser() if settings.catalog_path else _CATALOG_DIR
        packages_loaded = load_catalog_directory(catalog_dir, repository)
        logger.info("Loaded %d package templates from %s", packages_loaded, catalog_dir)

    # --- Register tools ---
    @server.tool
    async def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": "M90 Treatment Tracker",
            "version": "0.1.0",
            "storage_enabled": repository is not None,
            "package_templates": packages_loaded,
        }
        if repository is not None:
            status["patients_stored"] = repository.count_patients()
        return status

    register_metrics_preview_tools(server)

    if repository is not None:
        from m90.domains.treatment.domain_logic.treatment_service import TreatmentService
        from m90.domains.treatment.resources.catalog import register_catalog_resources
        from m90.domains.treatment.tools.export_tools import register_export_tools
        from m90.domains.treatment.tools.patient_tools import register_patient_tools
        from m90.domains.treatment.tools.record_tools import register_record_tools

        service = TreatmentService(repository)
        register_patient_tools(server, service, audit_logger)
        register_record_tools(server, service, audit_logger)
        register_export_tools(server, service, audit_logger)
        register_catalog_resources(server, repository)
        logger.info("Patient, record and export tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
