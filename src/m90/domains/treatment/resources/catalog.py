"""MCP resources for package template and clinic discovery."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastmcp import FastMCP

if TYPE_CHECKING:
    from m90.core.storage.repository import TreatmentRepository


def register_catalog_resources(mcp: FastMCP, repository: TreatmentRepository) -> None:
    """Register catalog discovery resources on the MCP server."""

    @mcp.resource("catalog://packages")
    async def package_catalog_resource() -> str:
        """Discover available treatment packages and clinics."""
        packages = repository.list_package_templates()
        clinics = repository.list_clinics()
        return json.dumps(
            {
                "package_count": len(packages),
                "packages": [
                    {
                        "id": p.id,
                        "name": p.name,
                        "duration_weeks": p.duration_weeks,
                        "medication_total_mg": p.medication_total_mg,
                        "required_consultations": {
                            "ENDOCRINO": p.endocrino_consultations,
                            "NUTRI": p.nutri_consultations,
                        },
                    }
                    for p in packages
                ],
                "clinics": [
                    {"id": c.id, "name": c.name, "city": c.city}
                    for c in clinics
                ],
            },
            indent=2,
        )
