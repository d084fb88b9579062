"""Field modification engine.

Applies located text edits (redact, redactWithPattern, remove, replace) to
string fields inside a JSON document and reports, for every edit, where it
sits in the original and in the resulting text.

Edits to one field are applied to that field's decoded string value in
three passes, because the operations interact:

  1. redact / redactWithPattern: same-length overwrite, never shifts
     anything, so order does not matter.
  2. remove / replace (deletion half): spans are deleted in ascending start
     order; every other pending span after the deleted text shifts left.
  3. replace (insertion half): replacement text is inserted at each
     collapsed replace span; every other span after it shifts right.

Each field's final value is then written back with one structural edit,
leaving the rest of the document (comments included) untouched.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Iterable, Union

from rich.console import Console
from rich.markup import escape

from contentward.engine.models import (
    AppliedFieldModification,
    FieldModification,
    FieldModificationResult,
    Finding,
    ModificationOperation,
    ResolvedFinding,
)
from contentward.modify.jsonc import (
    Node,
    NodeType,
    apply_edits,
    find_node_at_location,
    parse_tree,
    string_offsets,
    string_value_edit,
)

_console = Console(stderr=True)

_SEGMENT_RE = re.compile(r"([^\[\]]*)((?:\[\d+\])*)")
_INDEX_RE = re.compile(r"\[(\d+)\]")

_DEFAULT_REDACTION = "X"

_REDACT_OPERATIONS = frozenset({
    ModificationOperation.REDACT,
    ModificationOperation.REDACT_WITH_PATTERN,
})
_DELETE_OPERATIONS = frozenset({
    ModificationOperation.REMOVE,
    ModificationOperation.REPLACE,
})


def field_path_to_json_path(field_path: str) -> list[Union[str, int]]:
    """Convert ``a.b[0][1].c`` into ``["a", "b", 0, 1, "c"]``.

    An empty path addresses the document root.
    """
    path: list[Union[str, int]] = []
    if not field_path:
        return path
    for part in field_path.split("."):
        match = _SEGMENT_RE.fullmatch(part)
        if match is None:
            path.append(part)
            continue
        name, indexes = match.groups()
        if name or not indexes:
            path.append(name)
        path.extend(int(index) for index in _INDEX_RE.findall(indexes))
    return path


def redaction_fill(length: int, pattern: str | None) -> str:
    """Build a same-length redaction string.

    A 1-character pattern fills uniformly.  A 3-character pattern is
    (start, fill, end): ``"[*]"`` over 6 characters gives ``"[****]"``.
    Spans shorter than 3 characters repeat the start character.
    """
    if length <= 0:
        return ""
    if not pattern:
        pattern = _DEFAULT_REDACTION
    if len(pattern) == 3 and length >= 3:
        return pattern[0] + pattern[1] * (length - 2) + pattern[2]
    return pattern[0] * length


def _redaction_pattern(mod: AppliedFieldModification) -> str:
    text = mod.replacement_text
    if mod.operation == ModificationOperation.REDACT_WITH_PATTERN:
        return text
    # Plain redact honours a well-formed pattern and otherwise fills with X
    return text if len(text) in (1, 3) else _DEFAULT_REDACTION


def apply_modifications_to_value(
    value: str,
    modifications: list[AppliedFieldModification],
) -> str:
    """Apply all modifications for one field to its string value.

    Updates each modification in place: ``applied`` is set and
    ``result_start``/``result_end`` locate the edited span in the returned
    string.  Spans are always relative to ``value``; the input order of
    ``modifications`` does not affect the result.

    Args:
        value: The field's current string value.
        modifications: Modifications whose spans lie within ``value``.

    Returns:
        The new field value.
    """
    ordered = sorted(modifications, key=lambda m: m.start)
    for mod in ordered:
        mod.result_start = mod.start
        mod.result_end = mod.end

    text = value

    for mod in ordered:
        if mod.operation in _REDACT_OPERATIONS:
            fill = redaction_fill(mod.end - mod.start, _redaction_pattern(mod))
            text = text[:mod.start] + fill + text[mod.end:]
            mod.applied = True

    for mod in ordered:
        if mod.operation not in _DELETE_OPERATIONS:
            continue
        cut_start = mod.result_start
        cut_length = mod.result_end - mod.result_start
        text = text[:cut_start] + text[mod.result_end:]
        mod.result_end = cut_start
        for other in ordered:
            if other is mod:
                continue
            if other.result_start > cut_start:
                other.result_start = max(other.result_start - cut_length, cut_start)
            if other.result_end > cut_start:
                other.result_end = max(other.result_end - cut_length, cut_start)
        if mod.operation == ModificationOperation.REMOVE:
            mod.applied = True

    for position, mod in enumerate(ordered):
        if mod.operation != ModificationOperation.REPLACE:
            continue
        insert_at = mod.result_start
        inserted = mod.replacement_text
        text = text[:insert_at] + inserted + text[insert_at:]
        mod.result_end = insert_at + len(inserted)
        for other_position, other in enumerate(ordered):
            if other is mod:
                continue
            # Spans that start at the insertion point stay in front of it
            # only if they come earlier in start order
            if other.result_start > insert_at or (
                other.result_start == insert_at and other_position > position
            ):
                other.result_start += len(inserted)
                other.result_end += len(inserted)
            elif other.result_end > insert_at:
                other.result_end += len(inserted)
        mod.applied = True

    return text


def _group_by_field(
    applied: list[AppliedFieldModification],
) -> OrderedDict[str, list[AppliedFieldModification]]:
    groups: OrderedDict[str, list[AppliedFieldModification]] = OrderedDict()
    for mod in applied:
        groups.setdefault(mod.field_path, []).append(mod)
    return groups


def _string_node(root: Node | None, field_path: str) -> Node | None:
    node = find_node_at_location(root, field_path_to_json_path(field_path))
    if node is None or node.type != NodeType.STRING:
        return None
    return node


def apply_field_modifications(
    document_text: str,
    modifications: Iterable[FieldModification],
) -> FieldModificationResult:
    """Apply field modifications to a JSON(-with-comments) document.

    Args:
        document_text: The document the modifications were computed against.
        modifications: Edits to apply.  Spans are offsets into each field's
            decoded string value in ``document_text``.

    Returns:
        The edited text and one ``AppliedFieldModification`` per input, in
        input order.  Modifications whose field no longer resolves to a
        string, or whose span falls outside the value, are returned with
        ``applied=False``.

    Raises:
        PayloadParseError: If ``document_text`` is not well-formed.
    """
    applied = [AppliedFieldModification.from_modification(m) for m in modifications]
    root = parse_tree(document_text)
    if not applied:
        return FieldModificationResult(result_text=document_text, applied_modifications=[])

    edits = []
    original_nodes: dict[str, Node] = {}
    groups = _group_by_field(applied)

    for field_path, group in groups.items():
        node = _string_node(root, field_path)
        if node is None:
            _console.print(
                f"[#ffcc00]Warning:[/#ffcc00] field '{escape(field_path)}' does not exist or is not a "
                f"string; skipping {len(group)} modification(s)",
                highlight=False,
            )
            continue

        value: str = node.value
        in_range = []
        for mod in group:
            if 0 <= mod.start <= mod.end <= len(value):
                in_range.append(mod)
            else:
                _console.print(
                    f"[#ffcc00]Warning:[/#ffcc00] span [{mod.start}, {mod.end}) is outside "
                    f"field '{escape(field_path)}' (length {len(value)}); skipping",
                    highlight=False,
                )
        if not in_range:
            continue

        new_value = apply_modifications_to_value(value, in_range)
        edits.append(string_value_edit(node, new_value))
        original_nodes[field_path] = node
        groups[field_path] = in_range

    result_text = apply_edits(document_text, edits)
    if not original_nodes:
        return FieldModificationResult(result_text=result_text, applied_modifications=applied)

    result_root = parse_tree(result_text)
    for field_path, original_node in original_nodes.items():
        result_node = _string_node(result_root, field_path)
        if result_node is None:
            continue
        before = string_offsets(document_text, original_node)
        after = string_offsets(result_text, result_node)
        for mod in groups[field_path]:
            mod.document_original_start = before[mod.start]
            mod.document_original_end = before[mod.end]
            mod.document_result_start = after[mod.result_start]
            mod.document_result_end = after[mod.result_end]

    return FieldModificationResult(result_text=result_text, applied_modifications=applied)


def resolve_findings(document_text: str, findings: Iterable[Finding]) -> list[ResolvedFinding]:
    """Map located findings to absolute offsets in ``document_text``.

    Findings without a location, or whose field no longer resolves to a
    string, are left out.

    Raises:
        PayloadParseError: If ``document_text`` is not well-formed.
    """
    root = parse_tree(document_text)
    offsets_by_path: dict[str, list[int] | None] = {}
    resolved: list[ResolvedFinding] = []
    for finding in findings:
        location = finding.location
        if location is None:
            continue
        if location.field_path not in offsets_by_path:
            node = _string_node(root, location.field_path)
            offsets_by_path[location.field_path] = (
                string_offsets(document_text, node) if node is not None else None
            )
        offsets = offsets_by_path[location.field_path]
        if offsets is None or not 0 <= location.start <= location.end < len(offsets):
            continue
        resolved.append(
            ResolvedFinding(
                finding=finding,
                resolved_start=offsets[location.start],
                resolved_end=offsets[location.end],
            )
        )
    return resolved
