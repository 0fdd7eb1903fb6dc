"""
lifecycle_config -- single public entrypoint for stage catalog configuration.

Responsibility:
    Provides the ONLY way to obtain the stage catalog at runtime through
    ``get_active_catalog()``.  No other component reads the catalog file.
    Returns a frozen ``StageCatalog`` -- the sole runtime artifact.

Architecture position:
    Configuration -- sits above ``lifecycle_kernel`` and below
    ``lifecycle_services``.  The kernel MUST NEVER import from
    ``lifecycle_config``; ``bridges`` translates the parsed source into
    kernel types.

Failure modes:
    - ``FileNotFoundError`` -- the catalog file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``KeyError`` / ``ValueError`` -- missing keys, wrong shapes, or
      validation errors (all errors are listed in one message).

Audit relevance:
    Every successful ``get_active_catalog()`` call emits a
    ``LIFECYCLE_CONFIG_TRACE`` log entry with the catalog version, checksum,
    and unit types, tying recorded transitions to the catalog that governed
    them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lifecycle_config.bridges import build_stage_catalog
from lifecycle_config.loader import compute_checksum, load_catalog
from lifecycle_config.validator import ConfigValidationResult, validate_catalog
from lifecycle_kernel.domain.stage_catalog import StageCatalog

_logger = logging.getLogger("lifecycle_kernel.config")

_DEFAULT_CATALOG = Path(__file__).parent / "catalog.yaml"


def get_active_catalog(path: Path | str | None = None) -> StageCatalog:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override path to a catalog YAML file.  Defaults to the
            catalog bundled with this package.

    Raises:
        FileNotFoundError: If the catalog file does not exist.
        ValueError: If catalog validation fails.
    """
    catalog_path = Path(path) if path is not None else _DEFAULT_CATALOG
    source = load_catalog(catalog_path)

    validation = validate_catalog(source)
    for warning in validation.warnings:
        _logger.warning("catalog_validation_warning", extra={"warning": warning})
    if not validation.is_valid:
        raise ValueError(
            "Catalog validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    catalog = build_stage_catalog(source)

    _logger.info(
        "LIFECYCLE_CONFIG_TRACE",
        extra={
            "trace_type": "LIFECYCLE_CONFIG_TRACE",
            "catalog_version": catalog.version,
            "checksum": catalog.checksum,
            "source_path": str(catalog_path),
            "unit_types": sorted(catalog.unit_types),
            "over_consumption": catalog.over_consumption_policy.value,
        },
    )
    return catalog


__all__ = [
    "ConfigValidationResult",
    "compute_checksum",
    "get_active_catalog",
    "validate_catalog",
]
