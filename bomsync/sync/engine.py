"""
Stateful BOM synchronization engine.

The host calls `parse_event(sources)` whenever its set of BOM source files
(or their contents / options) changes. Each event:
1. Fingerprints every source and re-parses only the changed ones
2. Routes files whose header could not be mapped to the pending list
3. Reconciles all parsed lines with the working set
4. Installs working set, baseline and cache together

Nothing is installed when an event raises: the engine stages all new state
on copies first.
"""

import copy
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import SyncSettings
from ..errors import DecodeError
from ..models import ColumnMapping, ComponentLine, ImportOptions, Manufacturer, ParseResult
from ..parser import BomParser, apply_manual_mapping
from ..schema import LineType, SmdClassification
from .cache import SignatureCache, compute_signature
from .reconcile import ReconcileAction, ReconcileResult, SyncPhase, reconcile

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = {"id"}
_SEARCH_FIELDS = ("description", "references", "package", "customer_item_no", "comment")


@dataclass
class SourceFile:
    """One BOM source as the host currently sees it."""
    file_name: str
    content: Union[str, bytes]
    options: Optional[ImportOptions] = None


@dataclass
class ParseEventResult:
    """Summary of one parse event (or manual mapping application)."""
    action: Optional[ReconcileAction]
    phase: SyncPhase
    reparsed: List[str] = field(default_factory=list)
    cached: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    added_count: int = 0
    merged_count: int = 0
    pruned_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "action": self.action.name if self.action else None,
            "phase": self.phase.name,
            "reparsed": list(self.reparsed),
            "cached": list(self.cached),
            "pending": list(self.pending),
            "errors": dict(self.errors),
            "added_count": self.added_count,
            "merged_count": self.merged_count,
            "pruned_count": self.pruned_count,
        }


class BomSyncEngine:
    """
    Keeps an editable BOM working set in sync with its source files.

    Manual edits made through the engine (CRUD, manufacturer edits, explicit
    save) move the working set to the PERSISTED phase; from then on re-imports
    merge instead of replacing.
    """

    def __init__(self, parser: Optional[BomParser] = None,
                 settings: Optional[SyncSettings] = None,
                 debug: bool = False):
        """Initialize the engine.

        Args:
            parser: BOM parser (default: BomParser(settings))
            settings: Detection and signature settings (default: the parser's)
            debug: Log identity-resolution and reconciliation decisions
        """
        if settings is None:
            settings = parser.settings if parser is not None else SyncSettings()
        self.settings = settings
        self.parser = parser or BomParser(settings, debug=debug)
        self.debug = debug
        self.reset()

    # ==================================================================
    # Parse events
    # ==================================================================

    def _effective_options(self, file_id: str, options: ImportOptions) -> ImportOptions:
        """Import options with a remembered manual mapping applied."""
        remembered = self._manual_mappings.get(file_id)
        if remembered is None or options.mapping is not None:
            return options
        mapping, extra_columns = remembered
        return dataclasses.replace(
            options,
            mapping=mapping,
            extra_columns=extra_columns if extra_columns is not None else options.extra_columns,
        )

    def _parsed_by_file(self, cache: SignatureCache, file_order: Sequence[str]) -> Dict[str, ParseResult]:
        """Latest result with lines per file, falling back to the last mapped parse."""
        parsed = {}
        for file_id in file_order:
            entry = cache.get(file_id)
            if entry is not None and entry.result.lines is not None:
                parsed[file_id] = entry.result
            elif file_id in self._last_parsed:
                if self.debug:
                    logger.info(f"Keeping previous lines of {file_id} until it is mapped again")
                parsed[file_id] = self._last_parsed[file_id]
        return parsed

    def _reconcile(self, parsed_by_file: Mapping[str, ParseResult]) -> Tuple[ReconcileResult, SyncPhase]:
        outcome = reconcile(
            parsed_by_file,
            self._baseline,
            self._working_set,
            self._phase,
            self._lineage,
            self.debug,
        )
        if outcome.action == ReconcileAction.REPLACED:
            phase = SyncPhase.FRESH if outcome.working_set else SyncPhase.UNINITIALIZED
        else:
            phase = SyncPhase.PERSISTED
        return outcome, phase

    def _install(self, outcome: ReconcileResult, phase: SyncPhase, cache: SignatureCache) -> None:
        self._working_set = outcome.working_set
        self._baseline = outcome.baseline
        self._lineage = outcome.lineage
        self._phase = phase
        self._cache = cache

    def parse_event(self, sources: Mapping[str, SourceFile]) -> ParseEventResult:
        """
        Process the current set of source files.

        Args:
            sources: SourceFile per stable file id. Files missing from this
                     mapping are treated as removed.

        Returns:
            ParseEventResult describing what was re-parsed and how the
            working set changed
        """
        cache = self._cache.copy()
        cache.retain(sources)

        reparsed: List[str] = []
        cached: List[str] = []
        errors: Dict[str, str] = {}
        pending: Dict[str, ParseResult] = {}
        options_by_file: Dict[str, ImportOptions] = {}

        for file_id, source in sources.items():
            options = source.options
            if options is None:
                options = self._options.get(file_id) or ImportOptions()
            options_by_file[file_id] = options

            signature = compute_signature(source.content, options, self.settings.signature_slice)
            result = cache.lookup(file_id, signature)
            if result is not None:
                cached.append(file_id)
                # A cancelled prompt is only raised again once the file changes
                if result.lines is None and result.needs_mapping and file_id in self._pending:
                    pending[file_id] = result
                continue

            try:
                result = self.parser.parse_source(
                    source.file_name, source.content, self._effective_options(file_id, options)
                )
            except DecodeError as e:
                logger.error(f"Failed to parse {source.file_name}: {e}")
                errors[file_id] = str(e)
                continue

            cache.store(file_id, signature, result)
            reparsed.append(file_id)
            if self.debug:
                logger.info(f"Re-parsed {source.file_name} ({len(result.lines or [])} line(s))")
            if result.lines is None and result.needs_mapping:
                pending[file_id] = result

        parsed_by_file = self._parsed_by_file(cache, list(sources))
        outcome, phase = self._reconcile(parsed_by_file)

        self._install(outcome, phase, cache)
        self._last_parsed = parsed_by_file
        self._pending = pending
        self._options = options_by_file
        self._file_order = list(sources)
        self._manual_mappings = {
            file_id: remembered for file_id, remembered in self._manual_mappings.items()
            if file_id in sources
        }

        return ParseEventResult(
            action=outcome.action,
            phase=phase,
            reparsed=reparsed,
            cached=cached,
            pending=list(pending),
            errors=errors,
            added_count=outcome.added_count,
            merged_count=outcome.merged_count,
            pruned_count=outcome.pruned_count,
        )

    def apply_manual_mapping(self, file_id: str, mapping: Union[ColumnMapping, Dict[Any, int]],
                             extra_columns: Optional[List[str]] = None) -> ParseEventResult:
        """
        Resolve a pending file with a human-provided column mapping.

        The resulting lines are reconciled exactly like an automatic parse,
        and the mapping is remembered for later re-parses of the file.

        Raises:
            KeyError: If the file has no pending mapping
            ValueError: If the mapping is empty or invalid
        """
        pending = self._pending.get(file_id)
        if pending is None:
            raise KeyError(f"No pending column mapping for {file_id}")

        if not isinstance(mapping, ColumnMapping):
            mapping = ColumnMapping.from_dict(mapping)
        if len(mapping) == 0:
            raise ValueError(f"Column mapping for {file_id} maps no fields")

        if extra_columns is None:
            options = self._options.get(file_id)
            extra_columns = options.extra_columns if options is not None else None

        lines = apply_manual_mapping(pending, mapping, extra_columns)
        result = dataclasses.replace(pending, mapping=mapping, lines=lines)

        cache = self._cache.copy()
        entry = cache.get(file_id)
        if entry is not None:
            cache.store(file_id, entry.signature, result)

        parsed_by_file = self._parsed_by_file(cache, self._file_order)
        if entry is None:
            parsed_by_file[file_id] = result

        outcome, phase = self._reconcile(parsed_by_file)

        self._install(outcome, phase, cache)
        self._last_parsed = parsed_by_file
        self._manual_mappings[file_id] = (mapping, extra_columns)
        del self._pending[file_id]
        if self.debug:
            logger.info(f"Applied manual mapping to {file_id} ({len(lines)} line(s))")

        return ParseEventResult(
            action=outcome.action,
            phase=phase,
            pending=list(self._pending),
            added_count=outcome.added_count,
            merged_count=outcome.merged_count,
            pruned_count=outcome.pruned_count,
        )

    def cancel_manual_mapping(self, file_id: str) -> None:
        """Dismiss a pending mapping prompt; the working set is left unchanged."""
        if file_id not in self._pending:
            raise KeyError(f"No pending column mapping for {file_id}")
        del self._pending[file_id]

    def clear_cache(self) -> None:
        """Force every source to be re-parsed on the next event."""
        self._cache.clear()

    # ==================================================================
    # State access
    # ==================================================================

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def working_set(self) -> List[ComponentLine]:
        """Copy of the editable lines; edit through the engine methods."""
        return copy.deepcopy(self._working_set)

    @property
    def baseline(self) -> List[ComponentLine]:
        return copy.deepcopy(self._baseline)

    @property
    def pending(self) -> Dict[str, ParseResult]:
        """Parse results waiting for a manual column mapping, by file id."""
        return dict(self._pending)

    @property
    def needs_mapping(self) -> bool:
        return bool(self._pending)

    @property
    def cached_files(self) -> List[str]:
        return [file_id for file_id in self._file_order if file_id in self._cache]

    def get_line(self, line_id: str) -> ComponentLine:
        return copy.deepcopy(self._find_line(line_id))

    def _find_line(self, line_id: str) -> ComponentLine:
        for line in self._working_set:
            if line.id == line_id:
                return line
        raise KeyError(f"No line with id {line_id}")

    def filter_lines(self, query: str) -> List[ComponentLine]:
        """
        Case-insensitive search over the working set.

        Matches description, references, package, customer item number,
        comment and every manufacturer / part number. A blank query returns
        all lines.
        """
        if not query or not query.strip():
            return self.working_set

        needle = query.lower()
        matches = []
        for line in self._working_set:
            if any(needle in getattr(line, name).lower() for name in _SEARCH_FIELDS) or any(
                needle in m.manufacturer.lower() or needle in m.manufacturer_part.lower()
                for m in line.manufacturers
            ):
                matches.append(copy.deepcopy(line))
        return matches

    # ==================================================================
    # Manual edits
    # ==================================================================

    def _record_edit(self) -> None:
        self._phase = SyncPhase.PERSISTED

    def add_line(self, **fields) -> ComponentLine:
        """
        Append a manual line.

        Defaults follow a typical hand-entered part: SMD, quantity 1.

        Raises:
            ValueError: If the given id is already used
        """
        values: Dict[str, Any] = {"line_type": LineType.SMD, "quantity": 1}
        values.update(fields)
        values["manufacturers"] = [
            m if isinstance(m, Manufacturer) else Manufacturer.from_dict(m)
            for m in values.get("manufacturers") or []
        ]
        line = ComponentLine(**values)
        if any(existing.id == line.id for existing in self._working_set):
            raise ValueError(f"Line id {line.id} already exists")

        self._working_set.append(line)
        self._record_edit()
        return copy.deepcopy(line)

    def update_line(self, line_id: str, **updates) -> ComponentLine:
        """
        Update fields of a line. Passing None clears a nullable field.

        Raises:
            KeyError: If no line has this id
            ValueError: On an attempt to change the id or an unknown field
        """
        line = self._find_line(line_id)
        known = {f.name for f in dataclasses.fields(ComponentLine)}
        for name, value in updates.items():
            if name in _IMMUTABLE_FIELDS:
                if value != line_id:
                    raise ValueError("Line id cannot be changed")
                continue
            if name not in known:
                raise ValueError(f"Unknown line field: {name}")

        for name, value in updates.items():
            if name in _IMMUTABLE_FIELDS:
                continue
            if name == "manufacturers":
                value = [m if isinstance(m, Manufacturer) else Manufacturer.from_dict(m) for m in value or []]
            elif name == "line_type":
                value = LineType(value) if value else LineType.OTHER
            elif name == "smd_classification" and value is not None:
                value = SmdClassification(value)
            setattr(line, name, value)
        if line.quantity is None or line.quantity < 0:
            line.quantity = 0

        self._record_edit()
        return copy.deepcopy(line)

    def remove_line(self, line_id: str) -> ComponentLine:
        """Remove a line. Raises KeyError if no line has this id."""
        line = self._find_line(line_id)
        self._working_set = [l for l in self._working_set if l.id != line_id]
        self._record_edit()
        return copy.deepcopy(line)

    def add_manufacturer(self, line_id: str, manufacturer: Union[Manufacturer, str],
                         manufacturer_part: str = "") -> bool:
        """
        Add a manufacturer entry to a line unless an equal one is listed.

        Returns:
            True if the entry was added
        """
        line = self._find_line(line_id)
        if not isinstance(manufacturer, Manufacturer):
            manufacturer = Manufacturer(manufacturer, manufacturer_part)
        added = line.add_manufacturer(manufacturer)
        if added:
            self._record_edit()
        return added

    def remove_manufacturer(self, line_id: str, index: int) -> Manufacturer:
        """Remove the manufacturer entry at `index`. Raises IndexError if out of range."""
        line = self._find_line(line_id)
        if index < 0 or index >= len(line.manufacturers):
            raise IndexError(f"Line {line_id} has no manufacturer at index {index}")
        removed = line.manufacturers.pop(index)
        self._record_edit()
        return removed

    def mark_saved(self) -> None:
        """Record an explicit save: later re-imports merge instead of replacing."""
        self._record_edit()

    # ==================================================================
    # Board quantity
    # ==================================================================

    @property
    def board_quantity(self) -> int:
        return self._board_quantity

    def set_board_quantity(self, quantity: Optional[int]) -> None:
        """Set the number of boards; anything below 1 becomes 1."""
        self._board_quantity = quantity if quantity and quantity > 0 else 1

    def total_pieces(self, line: ComponentLine) -> int:
        return self._board_quantity * line.quantity

    # ==================================================================
    # Persistence
    # ==================================================================

    def export_state(self) -> Dict[str, Any]:
        """
        Plain-data snapshot for the host to persist.

        Per-file options include any remembered manual mapping, so a restored
        engine re-parses those files without prompting again.
        """
        options = {}
        for file_id, file_options in self._options.items():
            options[file_id] = self._effective_options(file_id, file_options).to_dict()
        for file_id in self._manual_mappings:
            if file_id not in options:
                options[file_id] = self._effective_options(file_id, ImportOptions()).to_dict()

        return {
            "working_set": [line.to_dict() for line in self._working_set],
            "board_quantity": self._board_quantity,
            "options": options,
        }

    def restore_state(self, state: Optional[Dict[str, Any]]) -> None:
        """
        Restore a snapshot produced by export_state.

        An empty working set leaves the current lines alone so the next parse
        event can populate them. A non-empty one is treated as saved work:
        the phase becomes PERSISTED and the parse baseline is reset.
        """
        if not state:
            return

        lines = [ComponentLine.from_dict(data) for data in state.get("working_set") or []]
        self.set_board_quantity(state.get("board_quantity"))

        for file_id, data in (state.get("options") or {}).items():
            options = ImportOptions.from_dict(data)
            if options.mapping is not None:
                self._manual_mappings[file_id] = (options.mapping, options.extra_columns)
                options = dataclasses.replace(options, mapping=None)
            self._options[file_id] = options

        if not lines:
            return

        self._working_set = lines
        self._baseline = []
        self._lineage = {}
        self._phase = SyncPhase.PERSISTED
        if self.debug:
            logger.info(f"Restored {len(lines)} persisted line(s)")

    def reset(self) -> None:
        """Drop all state: lines, baseline, cache, pending mappings, options."""
        self._working_set: List[ComponentLine] = []
        self._baseline: List[ComponentLine] = []
        self._lineage: Dict[str, str] = {}
        self._phase = SyncPhase.UNINITIALIZED
        self._cache = SignatureCache()
        self._pending: Dict[str, ParseResult] = {}
        self._last_parsed: Dict[str, ParseResult] = {}
        self._manual_mappings: Dict[str, Tuple[ColumnMapping, Optional[List[str]]]] = {}
        self._options: Dict[str, ImportOptions] = {}
        self._file_order: List[str] = []
        self._board_quantity = 1
