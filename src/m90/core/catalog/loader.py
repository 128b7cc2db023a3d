"""Catalog loader — reads package templates and clinics from YAML files.

A catalog file looks like::

    packages:
      - id: m90
        name: M90
        duration_weeks: 12
        medication_total_mg: 90
        consultations:
          endocrino: 3
          nutri: 2
    clinics:
      - id: clinic-sp
        name: Clinica SP Centro
        city: Sao Paulo
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from m90.core.storage.models import Clinic, PackageTemplate
from m90.core.storage.repository import TreatmentRepository

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Raised when a catalog file is malformed."""


@dataclass
class Catalog:
    packages: list[PackageTemplate] = field(default_factory=list)
    clinics: list[Clinic] = field(default_factory=list)


def load_catalog_file(path: Path) -> Catalog:
    """Parse one YAML catalog file."""
    with open(path, encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    try:
        packages = [
            PackageTemplate(
                id=str(p["id"]),
                name=str(p["name"]),
                duration_weeks=int(p["duration_weeks"]),
                medication_total_mg=float(p["medication_total_mg"]),
                endocrino_consultations=int(p.get("consultations", {}).get("endocrino", 0)),
                nutri_consultations=int(p.get("consultations", {}).get("nutri", 0)),
                active=bool(p.get("active", True)),
            )
            for p in data.get("packages", [])
        ]
        clinics = [
            Clinic(id=str(c["id"]), name=str(c["name"]), city=str(c.get("city", "")))
            for c in data.get("clinics", [])
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise CatalogError(f"Invalid catalog file {path}: {exc}") from exc

    for pkg in packages:
        if pkg.duration_weeks <= 0 or pkg.medication_total_mg < 0:
            raise CatalogError(f"Invalid package {pkg.id!r} in {path}")
    return Catalog(packages=packages, clinics=clinics)


def load_catalog_directory(directory: str | Path, repository: TreatmentRepository) -> int:
    """Load every ``*.yaml`` under ``directory`` into storage.

    Files starting with an underscore are skipped. Returns the number of
    package templates loaded.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Catalog directory does not exist: %s", directory)
        return 0

    count = 0
    for path in sorted(directory.rglob("*.yaml")):
        if path.name.startswith("_"):
            continue
        try:
            catalog = load_catalog_file(path)
        except (CatalogError, yaml.YAMLError):
            logger.exception("Failed to load catalog from %s", path)
            continue
        for clinic in catalog.clinics:
            repository.upsert_clinic(clinic)
        for pkg in catalog.packages:
            repository.upsert_package_template(pkg)
            logger.info("Loaded package template: %s (%d weeks)", pkg.id, pkg.duration_weeks)
        count += len(catalog.packages)
    return count
