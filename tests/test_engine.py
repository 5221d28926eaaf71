"""
Integration tests for BomSyncEngine: parse events, manual mapping,
manual edits and persistence.
"""

import io

import openpyxl
import pytest

from bomsync import BomParser
from bomsync.models import ImportOptions, Manufacturer
from bomsync.schema import LineType, SmdClassification
from bomsync.sync import BomSyncEngine, ReconcileAction, SourceFile, SyncPhase


# =============================================================================
# FIXTURES
# =============================================================================

BOM_V1 = (
    "Ref,Qty,Description,Mfr,MPN\n"
    "R1,2,Resistor 10k,Yageo,RC0603\n"
    "C1,1,Capacitor 100n,Murata,GRM188\n"
)

BOM_V2 = (
    "Ref,Qty,Description,Mfr,MPN\n"
    "R1,2,Resistor 10k,Yageo,RC0603\n"
    "R1,2,Resistor 10k,Vishay,CRCW0603\n"
    "U1,1,MCU,ST,STM32F4\n"
)

UNMAPPED_BOM = "Foo,Bar\nR1,3\n"

UNMAPPED_REIMPORT = "Foo,Bar,Baz\nR1,2,Resistor 10k\nC1,1,Capacitor 100n\n"


@pytest.fixture
def engine():
    return BomSyncEngine()


def sources(**contents):
    """Helper to build the sources mapping: file id -> SourceFile."""
    return {
        file_id: content if isinstance(content, SourceFile) else SourceFile(f"{file_id}.csv", content)
        for file_id, content in contents.items()
    }


def refs(engine):
    return [line.references for line in engine.working_set]


def line_by_ref(engine, reference):
    return next(line for line in engine.working_set if line.references == reference)


def make_workbook_bytes(rows):
    wb = openpyxl.Workbook()
    for row in rows:
        wb.active.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class ExplodingParser(BomParser):
    """Parser that fails unexpectedly on one file name."""

    def parse_source(self, file_name, content, options=None):
        if file_name == "explode.csv":
            raise RuntimeError("boom")
        return super().parse_source(file_name, content, options)


# =============================================================================
# PARSE EVENTS
# =============================================================================

class TestParseEvents:

    def test_first_parse_populates_working_set(self, engine):
        result = engine.parse_event(sources(bom=BOM_V1))

        assert result.action == ReconcileAction.REPLACED
        assert result.phase == SyncPhase.FRESH
        assert result.reparsed == ["bom"]
        assert refs(engine) == ["R1", "C1"]
        assert engine.phase == SyncPhase.FRESH

    def test_unchanged_source_served_from_cache(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        ids = [line.id for line in engine.working_set]

        result = engine.parse_event(sources(bom=BOM_V1))

        assert result.cached == ["bom"]
        assert result.reparsed == []
        assert [line.id for line in engine.working_set] == ids

    def test_option_change_forces_reparse(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        result = engine.parse_event(sources(bom=SourceFile("bom.csv", BOM_V1, ImportOptions(skip_bottom_rows=1))))

        assert result.reparsed == ["bom"]
        assert refs(engine) == ["R1"]

    def test_clear_cache_forces_reparse(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        engine.clear_cache()
        assert engine.parse_event(sources(bom=BOM_V1)).reparsed == ["bom"]

    def test_fresh_working_set_replaced_wholesale(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        result = engine.parse_event(sources(bom=BOM_V2))

        assert result.action == ReconcileAction.REPLACED
        assert refs(engine) == ["R1", "U1"]

    def test_idempotent_after_save(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        engine.mark_saved()
        engine.add_line(description="Label")
        before = [line.to_dict() for line in engine.working_set]

        engine.parse_event(sources(bom=BOM_V1))
        engine.clear_cache()
        engine.parse_event(sources(bom=BOM_V1))

        assert [line.to_dict() for line in engine.working_set] == before

    def test_manual_edit_survives_reimport(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        r1 = line_by_ref(engine, "R1")
        engine.update_line(r1.id, description="Precision resistor", pin_count=2)

        result = engine.parse_event(sources(bom=BOM_V2))

        assert result.action == ReconcileAction.MERGED
        merged = line_by_ref(engine, "R1")
        assert merged.id == r1.id
        assert merged.description == "Precision resistor"
        assert merged.pin_count == 2

    def test_stale_rows_pruned_manual_rows_kept(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        engine.add_line(description="Thermal paste", references="")

        engine.parse_event(sources(bom=BOM_V2))

        assert refs(engine) == ["R1", "", "U1"]
        assert "C1" not in refs(engine)

    def test_manufacturer_union_on_reimport(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        engine.mark_saved()

        engine.parse_event(sources(bom=BOM_V2))

        pairs = [(m.manufacturer, m.manufacturer_part) for m in line_by_ref(engine, "R1").manufacturers]
        assert pairs == [("Yageo", "RC0603"), ("Vishay", "CRCW0603")]

    def test_removed_file_lines_pruned(self, engine):
        engine.parse_event(sources(main=BOM_V1, extra="Ref,Qty\nJ1,1\n"))
        engine.mark_saved()
        assert refs(engine) == ["R1", "C1", "J1"]

        engine.parse_event(sources(main=BOM_V1))

        assert refs(engine) == ["R1", "C1"]
        assert engine.cached_files == ["main"]

    def test_parse_event_result_to_dict(self, engine):
        data = engine.parse_event(sources(bom=BOM_V1)).to_dict()
        assert data["action"] == "REPLACED"
        assert data["phase"] == "FRESH"
        assert data["added_count"] == 2
        assert data["errors"] == {}


# =============================================================================
# ERROR ISOLATION AND ATOMICITY
# =============================================================================

class TestErrorHandling:

    def test_decode_error_isolated_to_file(self, engine):
        result = engine.parse_event(sources(
            good=BOM_V1,
            bad=SourceFile("broken.xlsx", b"not a spreadsheet"),
        ))

        assert list(result.errors) == ["bad"]
        assert "broken.xlsx" in result.errors["bad"]
        assert refs(engine) == ["R1", "C1"]

    def test_decode_error_keeps_previous_result(self, engine):
        workbook = make_workbook_bytes([["Ref", "Qty"], ["J1", 1], ["J2", 2]])
        engine.parse_event(sources(sheet=SourceFile("bom.xlsx", workbook)))
        engine.mark_saved()

        result = engine.parse_event(sources(sheet=SourceFile("bom.xlsx", b"truncated upload")))

        assert "sheet" in result.errors
        assert refs(engine) == ["J1", "J2"]

    def test_failed_event_leaves_state_untouched(self):
        engine = BomSyncEngine(parser=ExplodingParser())
        engine.parse_event(sources(bom=BOM_V1))
        before = [line.to_dict() for line in engine.working_set]

        with pytest.raises(RuntimeError):
            engine.parse_event({
                "bom": SourceFile("bom.csv", BOM_V2),
                "explode": SourceFile("explode.csv", BOM_V1),
            })

        assert [line.to_dict() for line in engine.working_set] == before
        assert engine.parse_event(sources(bom=BOM_V1)).cached == ["bom"]


# =============================================================================
# MANUAL MAPPING
# =============================================================================

class TestManualMapping:

    def test_unmappable_file_is_pending(self, engine):
        result = engine.parse_event(sources(odd=UNMAPPED_BOM))

        assert result.pending == ["odd"]
        assert engine.needs_mapping
        assert engine.pending["odd"].headers == ["Foo", "Bar"]
        assert engine.working_set == []

    def test_apply_manual_mapping(self, engine):
        engine.parse_event(sources(odd=UNMAPPED_BOM))

        result = engine.apply_manual_mapping("odd", {"references": 0, "quantity": 1})

        assert result.pending == []
        assert not engine.needs_mapping
        assert [(line.references, line.quantity) for line in engine.working_set] == [("R1", 3)]

    def test_mapping_reused_from_cache(self, engine):
        engine.parse_event(sources(odd=UNMAPPED_BOM))
        engine.apply_manual_mapping("odd", {"references": 0, "quantity": 1})

        result = engine.parse_event(sources(odd=UNMAPPED_BOM))

        assert result.cached == ["odd"]
        assert result.pending == []
        assert refs(engine) == ["R1"]

    def test_mapping_remembered_for_changed_file(self, engine):
        engine.parse_event(sources(odd=UNMAPPED_BOM))
        engine.apply_manual_mapping("odd", {"references": 0, "quantity": 1})

        result = engine.parse_event(sources(odd="Foo,Bar\nR1,3\nR2,5\n"))

        assert result.reparsed == ["odd"]
        assert result.pending == []
        assert refs(engine) == ["R1", "R2"]

    def test_cancel_leaves_working_set(self, engine):
        engine.parse_event(sources(bom=BOM_V1, odd=UNMAPPED_BOM))
        before = [line.to_dict() for line in engine.working_set]

        engine.cancel_manual_mapping("odd")

        assert not engine.needs_mapping
        assert [line.to_dict() for line in engine.working_set] == before
        # Not prompted again until the file changes
        assert engine.parse_event(sources(bom=BOM_V1, odd=UNMAPPED_BOM)).pending == []
        assert engine.parse_event(sources(bom=BOM_V1, odd="Foo,Bar\nR9,1\n")).pending == ["odd"]

    def test_unmappable_reimport_keeps_edited_lines(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        r1 = line_by_ref(engine, "R1")
        engine.update_line(r1.id, description="Edited by hand")

        result = engine.parse_event(sources(bom=UNMAPPED_REIMPORT))

        assert result.pending == ["bom"]
        assert result.pruned_count == 0
        assert refs(engine) == ["R1", "C1"]
        assert engine.get_line(r1.id).description == "Edited by hand"

        engine.cancel_manual_mapping("bom")
        assert refs(engine) == ["R1", "C1"]

        result = engine.parse_event(sources(bom=UNMAPPED_REIMPORT))
        assert result.cached == ["bom"]
        assert result.pending == []
        assert engine.get_line(r1.id).description == "Edited by hand"

    def test_unmappable_reimport_of_fresh_set_keeps_lines(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        assert engine.phase == SyncPhase.FRESH

        result = engine.parse_event(sources(bom=UNMAPPED_REIMPORT))

        assert result.pending == ["bom"]
        assert engine.phase == SyncPhase.FRESH
        assert refs(engine) == ["R1", "C1"]

        engine.apply_manual_mapping("bom", {"references": 0, "quantity": 1})

        assert [(line.references, line.quantity) for line in engine.working_set] == [("R1", 2), ("C1", 1)]

    def test_no_pending_mapping(self, engine):
        with pytest.raises(KeyError):
            engine.apply_manual_mapping("missing", {"references": 0})
        with pytest.raises(KeyError):
            engine.cancel_manual_mapping("missing")

    def test_empty_mapping_rejected(self, engine):
        engine.parse_event(sources(odd=UNMAPPED_BOM))
        with pytest.raises(ValueError):
            engine.apply_manual_mapping("odd", {})
        assert engine.needs_mapping


# =============================================================================
# MANUAL EDITS
# =============================================================================

class TestManualEdits:

    def test_add_line_defaults(self, engine):
        line = engine.add_line(description="Spacer M3")

        assert line.line_type == LineType.SMD
        assert line.quantity == 1
        assert engine.phase == SyncPhase.PERSISTED
        assert engine.get_line(line.id).description == "Spacer M3"

    def test_add_line_with_manufacturer_dicts(self, engine):
        line = engine.add_line(manufacturers=[{"manufacturer": "Wurth", "manufacturer_part": "9774030151"}])
        assert line.manufacturers == [Manufacturer("Wurth", "9774030151")]

    def test_update_line(self, engine):
        line = engine.add_line(description="Spacer", pin_count=4)

        updated = engine.update_line(line.id, quantity=-3, pin_count=None)

        assert updated.quantity == 0
        assert updated.pin_count is None

    def test_update_line_rejects_id_change(self, engine):
        line = engine.add_line()
        with pytest.raises(ValueError):
            engine.update_line(line.id, id="other")
        with pytest.raises(ValueError):
            engine.update_line(line.id, colour="red")
        with pytest.raises(KeyError):
            engine.update_line("unknown", description="x")

    def test_update_line_converts_enum_values(self, engine):
        line = engine.add_line(references="R7")

        updated = engine.update_line(line.id, line_type="THT", smd_classification="Fast")

        assert updated.line_type == LineType.THT
        assert updated.smd_classification == SmdClassification.FAST
        assert engine.get_line(line.id).to_dict()["smd_classification"] == "Fast"

        cleared = engine.update_line(line.id, smd_classification=None)
        assert cleared.smd_classification is None

    def test_remove_line(self, engine):
        line = engine.add_line(description="Spacer")
        removed = engine.remove_line(line.id)
        assert removed.description == "Spacer"
        assert engine.working_set == []
        with pytest.raises(KeyError):
            engine.remove_line(line.id)

    def test_manufacturer_edits(self, engine):
        line = engine.add_line()

        assert engine.add_manufacturer(line.id, "Yageo", "RC0603") is True
        assert engine.add_manufacturer(line.id, Manufacturer("YAGEO", "rc0603")) is False
        assert engine.add_manufacturer(line.id, "Vishay", "CRCW0603") is True

        removed = engine.remove_manufacturer(line.id, 0)

        assert removed.manufacturer == "Yageo"
        assert [m.manufacturer for m in engine.get_line(line.id).manufacturers] == ["Vishay"]
        with pytest.raises(IndexError):
            engine.remove_manufacturer(line.id, 5)

    def test_working_set_is_a_copy(self, engine):
        line = engine.add_line(description="Original")
        engine.working_set[0].description = "Changed outside"
        assert engine.get_line(line.id).description == "Original"

    def test_filter_lines(self, engine):
        engine.parse_event(sources(bom=BOM_V1))

        assert [line.references for line in engine.filter_lines("yageo")] == ["R1"]
        assert [line.references for line in engine.filter_lines("CAPACITOR")] == ["C1"]
        assert len(engine.filter_lines("  ")) == 2
        assert engine.filter_lines("nothing") == []

    def test_board_quantity(self, engine):
        line = engine.add_line(quantity=2)

        engine.set_board_quantity(5)
        assert engine.total_pieces(line) == 10

        engine.set_board_quantity(0)
        assert engine.board_quantity == 1
        engine.set_board_quantity(None)
        assert engine.total_pieces(line) == 2


# =============================================================================
# PERSISTENCE
# =============================================================================

class TestPersistence:

    def test_restore_then_reimport_merges(self, engine):
        engine.parse_event(sources(bom=BOM_V1))
        r1 = line_by_ref(engine, "R1")
        engine.update_line(r1.id, description="Kept")
        state = engine.export_state()

        restored = BomSyncEngine()
        restored.restore_state(state)
        assert restored.phase == SyncPhase.PERSISTED

        result = restored.parse_event(sources(bom=BOM_V1))

        assert result.action == ReconcileAction.MERGED
        assert refs(restored) == ["R1", "C1"]
        assert line_by_ref(restored, "R1").description == "Kept"

    def test_stale_restore_replaced(self, engine):
        engine.restore_state({"working_set": [
            {"references": "X1"}, {"references": "X2"}, {"references": "X3"},
        ]})

        result = engine.parse_event(sources(bom=BOM_V1))

        assert result.action == ReconcileAction.STALE_RESTORE_REPLACED
        assert refs(engine) == ["R1", "C1"]
        assert engine.phase == SyncPhase.PERSISTED

    def test_empty_restore_is_noop(self, engine):
        engine.restore_state({"working_set": [], "board_quantity": 3})

        assert engine.phase == SyncPhase.UNINITIALIZED
        assert engine.board_quantity == 3
        assert engine.parse_event(sources(bom=BOM_V1)).action == ReconcileAction.REPLACED

    def test_manual_mapping_persisted_in_options(self, engine):
        engine.parse_event(sources(odd=UNMAPPED_BOM))
        engine.apply_manual_mapping("odd", {"references": 0, "quantity": 1})
        state = engine.export_state()

        assert state["options"]["odd"]["mapping"] == {"references": 0, "quantity": 1}

        restored = BomSyncEngine()
        restored.restore_state(state)
        result = restored.parse_event(sources(odd=UNMAPPED_BOM))

        assert result.pending == []
        assert refs(restored) == ["R1"]

    def test_reset(self, engine):
        engine.parse_event(sources(bom=BOM_V1, odd=UNMAPPED_BOM))
        engine.set_board_quantity(4)

        engine.reset()

        assert engine.working_set == []
        assert engine.baseline == []
        assert engine.phase == SyncPhase.UNINITIALIZED
        assert not engine.needs_mapping
        assert engine.board_quantity == 1
        assert engine.parse_event(sources(bom=BOM_V1)).reparsed == ["bom"]
