"""Tests for header-to-field column mapping."""

import re

import pytest

from bomsync.column_mapper import ColumnMapper
from bomsync.models import ColumnMapping
from bomsync.schema import BomField


@pytest.fixture
def mapper():
    return ColumnMapper()


class TestNormalization:

    def test_strips_non_alphanumerics(self):
        assert ColumnMapper.normalize_header("Ref. Des.") == "refdes"
        assert ColumnMapper.normalize_header(" Mfr Part # ") == "mfrpart"

    def test_none_header(self):
        assert ColumnMapper.normalize_header(None) == ""


class TestColumnMapping:

    def test_typical_header(self, mapper):
        mapping = mapper.map_columns(["Ref", "Qty", "Mfr", "MPN"])
        assert mapping.columns == {
            BomField.REFERENCES: 0,
            BomField.QUANTITY: 1,
            BomField.MANUFACTURER: 2,
            BomField.MANUFACTURER_PART: 3,
        }

    def test_header_variants(self, mapper):
        mapping = mapper.map_columns([
            "Designator", "Footprint", "Part Description", "Customer Part No", "Mounting Type", "Notes",
        ])
        assert mapping.index_of(BomField.REFERENCES) == 0
        assert mapping.index_of(BomField.PACKAGE) == 1
        assert mapping.index_of(BomField.DESCRIPTION) == 2
        assert mapping.index_of(BomField.CUSTOMER_ITEM_NO) == 3
        assert mapping.index_of(BomField.TYPE) == 4
        assert mapping.index_of(BomField.COMMENT) == 5

    def test_first_column_claims_field(self, mapper):
        mapping = mapper.map_columns(["Qty", "Quantity", "Ref"])
        assert mapping.index_of(BomField.QUANTITY) == 0
        assert BomField.REFERENCES in mapping
        assert len(mapping) == 2

    def test_single_match_is_not_trusted(self, mapper):
        assert mapper.map_columns(["Ref", "Foo", "Bar"]) is None
        assert mapper.count_matches(["Ref", "Foo", "Bar"]) == 1

    def test_empty_header(self, mapper):
        assert mapper.map_columns([]) is None
        assert mapper.count_matches(["", None]) == 0

    def test_custom_threshold(self):
        mapper = ColumnMapper(min_mapped_fields=1)
        mapping = mapper.map_columns(["Ref", "Foo"])
        assert mapping is not None
        assert mapping.columns == {BomField.REFERENCES: 0}

    def test_custom_patterns(self):
        mapper = ColumnMapper(patterns=[
            (BomField.REFERENCES, re.compile(r"^bauteil$")),
            (BomField.QUANTITY, re.compile(r"^menge$")),
        ])
        mapping = mapper.map_columns(["Bauteil", "Menge", "Ref"])
        assert mapping.columns == {BomField.REFERENCES: 0, BomField.QUANTITY: 1}


class TestMappingReport:

    def test_report_contents(self, mapper):
        headers = ["Ref", "Qty", "Supplier Code", "Mfr"]
        report = mapper.get_mapping_report(headers)

        assert report["matched_count"] == 3
        assert report["trusted"] is True
        assert report["mapped"]["references"] == {"header": "Ref", "index": 0, "label": "References"}
        assert report["unmapped"] == ["Supplier Code"]
        assert "manufacturer_part" in report["standard_fields"]

    def test_unmapped_headers_skip_blank(self, mapper):
        mapping = ColumnMapping({BomField.REFERENCES: 0})
        assert mapper.unmapped_headers(["Ref", "", "Extra"], mapping) == ["Extra"]
