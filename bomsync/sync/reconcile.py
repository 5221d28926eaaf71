"""
Reconciliation of freshly parsed BOM lines with the editable working set.

Three inputs take part in every reconciliation:
- the previous baseline: what the last parse produced
- the freshly parsed lines: what the sources say now
- the working set: what the user sees and edits

The baseline is only used to decide what DISAPPEARED from the sources.
Lines that never came from a source (manual additions) are never pruned.

Merge precedence per field:
- description, package, customer_item_no, comment: existing wins unless empty
- quantity: existing wins if > 0
- manufacturers: union by normalized pair, existing entries first
- extra: parsed value replaces the existing one (it is re-derived every parse)
- id and user-assigned fields (pin_count, smd_classification): never touched

All functions here are pure: inputs are never mutated, results are fresh copies.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Mapping, Optional, Tuple

from ..models import ComponentLine, Manufacturer, ParseResult, new_line_id
from .keys import LineIndex, dedupe_lines, match_key, merge_key

logger = logging.getLogger(__name__)

_FILL_IF_EMPTY_FIELDS = ("description", "package", "customer_item_no", "comment")


class SyncPhase(Enum):
    """Lifecycle of the working set relative to its sources."""
    UNINITIALIZED = auto()  # no parse baseline yet
    FRESH = auto()          # populated by parse, no manual edits
    PERSISTED = auto()      # edited or explicitly saved


class ReconcileAction(Enum):
    """How a reconciliation produced the new working set."""
    REPLACED = auto()                # no manual edits: wholesale replacement
    STALE_RESTORE_REPLACED = auto()  # restored set with no baseline, larger than the source
    MERGED = auto()                  # prune + upsert against the previous baseline


@dataclass
class ReconcileResult:
    """
    Outcome of one reconciliation.

    lineage maps each freshly parsed line id to the id of the working-set
    line it landed in; it lets the next reconciliation find lines whose
    keys no longer match because the user edited them.
    """
    working_set: List[ComponentLine]
    baseline: List[ComponentLine]
    action: ReconcileAction
    lineage: Dict[str, str] = field(default_factory=dict)
    added_count: int = 0
    merged_count: int = 0
    pruned_count: int = 0

    def to_dict(self) -> Dict:
        """Serialize to dictionary for JSON output."""
        return {
            "action": self.action.name,
            "working_set": [line.to_dict() for line in self.working_set],
            "baseline": [line.to_dict() for line in self.baseline],
            "added_count": self.added_count,
            "merged_count": self.merged_count,
            "pruned_count": self.pruned_count,
        }


def collect_parsed_lines(parsed_by_file: Mapping[str, ParseResult]) -> List[ComponentLine]:
    """
    Concatenate the lines of every successfully parsed file.

    Files without lines (mapping pending) contribute nothing. Duplicates by
    merge key are dropped, first occurrence wins.
    """
    lines: List[ComponentLine] = []
    for result in parsed_by_file.values():
        if result.lines:
            lines.extend(result.lines)
    return dedupe_lines(lines)


def merge_line_fields(existing: ComponentLine, parsed: ComponentLine) -> None:
    """Merge a parsed line into an existing working-set line, in place."""
    for name in _FILL_IF_EMPTY_FIELDS:
        if not getattr(existing, name).strip():
            setattr(existing, name, getattr(parsed, name))

    if existing.quantity <= 0:
        existing.quantity = parsed.quantity

    for entry in parsed.manufacturers:
        existing.add_manufacturer(Manufacturer(entry.manufacturer, entry.manufacturer_part))

    if parsed.extra is not None:
        existing.extra = dict(parsed.extra)


def _find_target(
    parsed: ComponentLine,
    working_index: LineIndex,
    baseline_index: LineIndex,
    lineage: Mapping[str, str]
) -> Optional[ComponentLine]:
    """
    Working-set line a parsed line should merge into.

    Order: strict key, soft key, then lineage (the baseline ancestor of the
    parsed line and the working line it landed in last time).
    """
    strict = working_index.by_merge_key.get(merge_key(parsed))
    soft = working_index.by_match_key.get(match_key(parsed))

    if strict is not None:
        if soft is not None and soft is not strict:
            logger.warning(
                f"Key collision for parsed line '{parsed.references or parsed.description}': "
                f"strict match {strict.id} and soft match {soft.id} differ; using strict match"
            )
        return strict
    if soft is not None:
        return soft

    ancestor = baseline_index.find(parsed)
    ancestor_id = ancestor.id if ancestor is not None else parsed.id
    return working_index.by_id.get(lineage.get(ancestor_id, ancestor_id))


def merge_into_working_set(
    working_set: List[ComponentLine],
    freshly_parsed: List[ComponentLine],
    previous_baseline: List[ComponentLine],
    lineage: Optional[Mapping[str, str]] = None,
    debug: bool = False
) -> Tuple[List[ComponentLine], Dict[str, str], Dict[str, int]]:
    """
    Prune stale lines and upsert parsed lines into a copy of the working set.

    Args:
        working_set: Current editable lines (not mutated)
        freshly_parsed: Deduplicated lines of the current parse
        previous_baseline: Lines of the previous parse
        lineage: Previous parsed-id -> working-id lineage
        debug: Log every pruning / append decision

    Returns:
        Tuple of (new working set, new lineage, counts)
    """
    lineage = lineage or {}
    baseline_index = LineIndex(previous_baseline)
    fresh_index = LineIndex(freshly_parsed)

    # Step 1: prune lines that came from a source and vanished from it
    kept: List[ComponentLine] = []
    pruned = 0
    for line in copy.deepcopy(working_set):
        if baseline_index.contains(line) and not fresh_index.contains(line):
            pruned += 1
            if debug:
                logger.info(f"Pruned stale line {line.id} ('{line.references or line.description}')")
            continue
        kept.append(line)

    # Step 2: upsert parsed lines
    working_index = LineIndex(kept)
    new_lineage: Dict[str, str] = {}
    added = 0
    merged = 0
    for parsed in freshly_parsed:
        target = _find_target(parsed, working_index, baseline_index, lineage)
        if target is not None:
            merge_line_fields(target, parsed)
            new_lineage[parsed.id] = target.id
            merged += 1
            continue

        line = copy.deepcopy(parsed)
        if line.id in working_index.by_id:
            line.id = new_line_id()
        kept.append(line)
        # Only ids are indexed: keys of appended lines must not absorb later parsed lines
        working_index.by_id[line.id] = line
        new_lineage[parsed.id] = line.id
        added += 1
        if debug:
            logger.info(f"Added parsed line {line.id} ('{line.references or line.description}')")

    counts = {"added": added, "merged": merged, "pruned": pruned}
    return kept, new_lineage, counts


def reconcile(
    parsed_by_file: Mapping[str, ParseResult],
    previous_baseline: List[ComponentLine],
    working_set: List[ComponentLine],
    phase: SyncPhase = SyncPhase.PERSISTED,
    lineage: Optional[Mapping[str, str]] = None,
    debug: bool = False
) -> ReconcileResult:
    """
    Reconcile parse results with the working set.

    1. Collect and deduplicate the parsed lines of all files
    2. No manual edits recorded (UNINITIALIZED / FRESH): replace wholesale
    3. Previous baseline empty and working set strictly larger than the
       parsed lines: the working set is a stale restore, replace wholesale
    4. Otherwise merge against the previous baseline

    Args:
        parsed_by_file: ParseResult per file id
        previous_baseline: Parsed lines of the previous reconciliation
        working_set: Current editable lines
        phase: Lifecycle phase of the working set
        lineage: Lineage returned by the previous reconciliation
        debug: Log reconciliation decisions

    Returns:
        ReconcileResult with the new working set and the new baseline
    """
    fresh = collect_parsed_lines(parsed_by_file)
    baseline = copy.deepcopy(fresh)

    if phase != SyncPhase.PERSISTED:
        if debug:
            logger.info(f"Working set has no manual edits; replacing with {len(fresh)} parsed line(s)")
        return ReconcileResult(
            working_set=copy.deepcopy(fresh),
            baseline=baseline,
            action=ReconcileAction.REPLACED,
            lineage={line.id: line.id for line in fresh},
            added_count=len(fresh),
        )

    # Persisted data from an old import configuration has nothing to diff
    # against; converge back to the source instead of keeping stale rows.
    if not previous_baseline and fresh and len(working_set) > len(fresh):
        logger.warning(
            f"Restored working set ({len(working_set)} lines) has no parse baseline and is "
            f"larger than the source ({len(fresh)} lines); replacing it"
        )
        return ReconcileResult(
            working_set=copy.deepcopy(fresh),
            baseline=baseline,
            action=ReconcileAction.STALE_RESTORE_REPLACED,
            lineage={line.id: line.id for line in fresh},
            added_count=len(fresh),
            pruned_count=len(working_set),
        )

    merged_set, new_lineage, counts = merge_into_working_set(
        working_set, fresh, previous_baseline, lineage, debug
    )
    if debug:
        logger.info(
            f"Merged {len(fresh)} parsed line(s): {counts['added']} added, "
            f"{counts['merged']} merged, {counts['pruned']} pruned"
        )
    return ReconcileResult(
        working_set=merged_set,
        baseline=baseline,
        action=ReconcileAction.MERGED,
        lineage=new_lineage,
        added_count=counts["added"],
        merged_count=counts["merged"],
        pruned_count=counts["pruned"],
    )
