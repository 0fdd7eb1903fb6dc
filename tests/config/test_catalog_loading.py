"""
Stage catalog configuration tests.

Covers:
- The bundled catalog loads, validates, and resolves to a StageCatalog
- Loader shape errors and checksum determinism
- Validator error and warning reporting
- LIFECYCLE_CONFIG_TRACE audit log on every resolution
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from lifecycle_config import compute_checksum, get_active_catalog, validate_catalog
from lifecycle_config.bridges import build_stage_catalog
from lifecycle_config.loader import load_catalog, load_yaml_file, parse_catalog
from lifecycle_kernel.domain.values import OverConsumptionPolicy, UnitStatus

VALID_DOCUMENT = {
    "version": "test-1",
    "over_consumption": "reject",
    "command_timeout_seconds": 5,
    "recent_window_hours": 12,
    "unit_types": {
        "garment": {
            "stages": ["cutting", "stitching", "packing"],
            "terminal": {"delivered": "completed", "rejected": "cancelled"},
            "checkpoints": {"stitching": ["seam_strength"]},
            "planned_hours": {"cutting": 2, "stitching": 4.5},
        },
    },
}


def write_catalog(tmp_path: Path, document: dict) -> Path:
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


# =========================================================================
# Bundled catalog
# =========================================================================


class TestBundledCatalog:

    def test_bundled_catalog_is_valid(self):
        catalog = get_active_catalog()
        assert set(catalog.unit_types) == {
            "basic_garment",
            "production_order_line",
            "barcoded_product",
        }
        assert catalog.over_consumption_policy is OverConsumptionPolicy.WARN
        assert catalog.command_timeout_seconds == 30.0
        assert catalog.recent_window_hours == 24
        assert len(catalog.checksum) == 64

    def test_basic_garment_sequence(self):
        garment = get_active_catalog().unit_type("basic_garment")
        assert garment.stages == ("cutting", "stitching", "packing")
        assert garment.completion_stage() == "delivered"
        assert garment.terminal_status("rejected") == UnitStatus.CANCELLED
        assert garment.checkpoints_for("stitching") == ("seam_strength", "thread_tension")

    def test_production_order_line_starts_with_material(self):
        order_line = get_active_catalog().unit_type("production_order_line")
        assert order_line.first_stage == "material_allocated"
        assert order_line.next_stage("quality_check") == "packing"
        assert order_line.last_stage == "in_transit"


# =========================================================================
# Loader
# =========================================================================


class TestLoader:

    def test_round_trip_through_file(self, tmp_path):
        source = load_catalog(write_catalog(tmp_path, VALID_DOCUMENT))
        assert source.version == "test-1"
        assert source.source_path.endswith("catalog.yaml")
        garment = source.unit_types[0]
        assert garment.stages == ("cutting", "stitching", "packing")
        assert ("stitching", ("seam_strength",)) in garment.checkpoints

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_catalog(tmp_path / "missing.yaml")

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="top level"):
            load_yaml_file(path)

    def test_missing_version_is_key_error(self):
        with pytest.raises(KeyError):
            parse_catalog({"unit_types": {}})

    def test_stages_must_be_list(self):
        document = {
            "version": "1",
            "unit_types": {"garment": {"stages": "cutting"}},
        }
        with pytest.raises(ValueError, match="must be a list"):
            parse_catalog(document)

    def test_checksum_is_order_independent(self):
        reordered = dict(reversed(list(VALID_DOCUMENT.items())))
        assert compute_checksum(reordered) == compute_checksum(VALID_DOCUMENT)

    def test_checksum_changes_with_content(self):
        changed = dict(VALID_DOCUMENT, version="test-2")
        assert compute_checksum(changed) != compute_checksum(VALID_DOCUMENT)


# =========================================================================
# Validator
# =========================================================================


class TestValidator:

    def test_valid_document_has_no_errors(self):
        result = validate_catalog(parse_catalog(VALID_DOCUMENT))
        assert result.is_valid
        assert result.warnings == []

    def test_every_problem_is_reported(self):
        document = {
            "version": "",
            "over_consumption": "ignore",
            "command_timeout_seconds": 0,
            "recent_window_hours": -1,
            "unit_types": {
                "broken": {
                    "stages": ["cutting", "cutting"],
                    "terminal": {"cutting": "completed", "lost": "missing"},
                    "checkpoints": {"dyeing": ["colour"]},
                    "planned_hours": {"cutting": -2},
                },
            },
        }
        result = validate_catalog(parse_catalog(document))
        assert not result.is_valid
        joined = "\n".join(result.errors)
        assert "version must not be empty" in joined
        assert "over_consumption 'ignore'" in joined
        assert "command_timeout_seconds" in joined
        assert "recent_window_hours" in joined
        assert "duplicate stages ['cutting']" in joined
        assert "overlap production stages ['cutting']" in joined
        assert "unknown status 'missing'" in joined
        assert "unknown stage 'dyeing'" in joined
        assert "planned_hours for 'cutting' must be a positive number" in joined

    def test_missing_completion_is_an_error(self):
        document = {
            "version": "1",
            "unit_types": {
                "garment": {"stages": ["cutting"], "terminal": {"rejected": "cancelled"}},
            },
        }
        result = validate_catalog(parse_catalog(document))
        assert any("'completed'" in e for e in result.errors)

    def test_missing_cancellation_is_a_warning(self):
        document = {
            "version": "1",
            "unit_types": {
                "garment": {"stages": ["cutting"], "terminal": {"delivered": "completed"}},
            },
        }
        result = validate_catalog(parse_catalog(document))
        assert result.is_valid
        assert any("cannot be cancelled" in w for w in result.warnings)

    def test_no_unit_types(self):
        result = validate_catalog(parse_catalog({"version": "1", "unit_types": {}}))
        assert "at least one unit type must be defined" in result.errors


# =========================================================================
# Resolution and audit trace
# =========================================================================


class TestGetActiveCatalog:

    def test_custom_path_resolves(self, tmp_path):
        catalog = get_active_catalog(write_catalog(tmp_path, VALID_DOCUMENT))
        garment = catalog.unit_type("garment")
        assert catalog.version == "test-1"
        assert catalog.over_consumption_policy is OverConsumptionPolicy.REJECT
        assert catalog.command_timeout_seconds == 5.0
        assert catalog.recent_window_hours == 12
        assert garment.planned_hours_for("stitching") == Decimal("4.5")

    def test_invalid_catalog_raises_with_all_errors(self, tmp_path):
        document = dict(VALID_DOCUMENT, version="", over_consumption="ignore")
        with pytest.raises(ValueError) as exc_info:
            get_active_catalog(write_catalog(tmp_path, document))
        message = str(exc_info.value)
        assert "version must not be empty" in message
        assert "over_consumption" in message

    def test_config_trace_is_logged(self, tmp_path, captured_logs):
        path = write_catalog(tmp_path, VALID_DOCUMENT)
        catalog = get_active_catalog(path)

        traces = [r for r in captured_logs() if r["message"] == "LIFECYCLE_CONFIG_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["trace_type"] == "LIFECYCLE_CONFIG_TRACE"
        assert trace["catalog_version"] == "test-1"
        assert trace["checksum"] == catalog.checksum
        assert trace["source_path"] == str(path)
        assert trace["unit_types"] == ["garment"]
        assert trace["over_consumption"] == "reject"

    def test_bridge_matches_resolution(self):
        source = parse_catalog(VALID_DOCUMENT)
        catalog = build_stage_catalog(source)
        assert catalog.checksum == compute_checksum(VALID_DOCUMENT)
