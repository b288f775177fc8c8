"""Structural, key-addressed edits of YAML deployment descriptors.

A version field is addressed by a path expression, not by a text pattern::

    images[name=ghcr.io/acme/api].newTag
    api.image.tag
    spec.template.spec.containers[name=api].image

Segments are mapping keys separated by dots; ``key[field=value]`` selects the
single mapping inside the sequence under ``key`` whose ``field`` equals
``value``.  Selector values may contain dots, slashes and colons.

The document is composed into a node tree to locate the addressed scalar,
and only that scalar's character span is rewritten.  Comments, ordering,
quoting and unrelated values elsewhere in the descriptor are left exactly as
they were.  The edited text is re-composed to confirm each field now holds
its new value.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import yaml


class DescriptorEditError(ValueError):
    """Raised when a field cannot be located or rewritten unambiguously."""


@dataclass(frozen=True, slots=True)
class PathSegment:
    key: str
    selector: tuple[str, str] | None = None


@dataclass(frozen=True, slots=True)
class FieldEdit:
    path: str
    value: str


@dataclass(frozen=True, slots=True)
class FieldChange:
    path: str
    old: str
    new: str


@dataclass(frozen=True, slots=True)
class EditResult:
    text: str
    changes: tuple[FieldChange, ...]

    @property
    def changed(self) -> bool:
        return bool(self.changes)


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------


def parse_field_path(path: str) -> tuple[PathSegment, ...]:
    """Parse a field path expression into segments."""
    segments: list[PathSegment] = []
    key: list[str] = []
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == "[":
            end = path.find("]", i)
            if end == -1:
                raise DescriptorEditError(f"Unclosed selector in {path!r}")
            field, sep, value = path[i + 1 : end].partition("=")
            if not sep or not field:
                raise DescriptorEditError(
                    f"Selector in {path!r} must look like [field=value]"
                )
            segments.append(PathSegment("".join(key), (field, value)))
            key = []
            i = end + 1
            if i < len(path) and path[i] != ".":
                raise DescriptorEditError(f"Expected '.' after selector in {path!r}")
        elif ch == ".":
            if key:
                segments.append(PathSegment("".join(key)))
                key = []
            elif not segments or segments[-1].selector is None:
                raise DescriptorEditError(f"Empty segment in {path!r}")
        else:
            key.append(ch)
        i += 1
    if key:
        segments.append(PathSegment("".join(key)))
    if not segments:
        raise DescriptorEditError("Empty field path")
    return tuple(segments)


# ---------------------------------------------------------------------------
# Node lookup
# ---------------------------------------------------------------------------


def _mapping_get(node: yaml.Node, key: str) -> yaml.Node | None:
    if not isinstance(node, yaml.MappingNode):
        return None
    for key_node, value_node in node.value:
        if isinstance(key_node, yaml.ScalarNode) and key_node.value == key:
            return value_node
    return None


def _select(node: yaml.Node, field: str, value: str, path: str) -> yaml.Node | None:
    if not isinstance(node, yaml.SequenceNode):
        return None
    matches = [
        item
        for item in node.value
        if isinstance(_mapping_get(item, field), yaml.ScalarNode)
        and _mapping_get(item, field).value == value
    ]
    if len(matches) > 1:
        raise DescriptorEditError(f"{path}: {len(matches)} items match [{field}={value}]")
    return matches[0] if matches else None


def _resolve(root: yaml.Node, segments: tuple[PathSegment, ...], path: str) -> yaml.Node | None:
    node: yaml.Node | None = root
    for segment in segments:
        if node is None:
            return None
        if segment.key:
            node = _mapping_get(node, segment.key)
        if segment.selector is not None and node is not None:
            node = _select(node, *segment.selector, path)
    return node


def _locate(text: str, path: str) -> yaml.ScalarNode:
    segments = parse_field_path(path)
    try:
        documents = list(yaml.compose_all(text, Loader=yaml.SafeLoader))
    except yaml.YAMLError as exc:
        raise DescriptorEditError(f"Descriptor is not valid YAML: {exc}") from exc

    found = [
        node
        for node in (_resolve(doc, segments, path) for doc in documents if doc is not None)
        if node is not None
    ]
    if not found:
        raise DescriptorEditError(f"Field {path!r} not found")
    if len(found) > 1:
        raise DescriptorEditError(f"Field {path!r} found in {len(found)} documents")
    node = found[0]
    if not isinstance(node, yaml.ScalarNode):
        raise DescriptorEditError(f"Field {path!r} is not a scalar")
    return node


def read_field(text: str, path: str) -> str:
    """Return the current value of the scalar at *path*."""
    return _locate(text, path).value


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _plain_round_trips(value: str, tag: str) -> bool:
    try:
        node = yaml.compose(f"k: {value}\n", Loader=yaml.SafeLoader)
    except yaml.YAMLError:
        return False
    scalar = _mapping_get(node, "k")
    return (
        isinstance(scalar, yaml.ScalarNode)
        and scalar.style is None
        and scalar.value == value
        and scalar.tag == tag
    )


def _render_scalar(original: yaml.ScalarNode, value: str) -> str:
    """Render *value* in the original node's quoting style where that is safe."""
    if original.style == "'" and "\n" not in value:
        return "'" + value.replace("'", "''") + "'"
    if original.style is None and value and _plain_round_trips(value, original.tag):
        return value
    # Double-quoted YAML accepts JSON string escapes
    return json.dumps(value)


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


def apply_edits(text: str, edits: list[FieldEdit]) -> EditResult:
    """Rewrite each addressed scalar in *text*; leave every other byte alone."""
    spans: list[tuple[int, int, str]] = []
    changes: list[FieldChange] = []
    seen: dict[int, str] = {}

    for edit in edits:
        node = _locate(text, edit.path)
        start, end = node.start_mark.index, node.end_mark.index
        if start in seen:
            raise DescriptorEditError(
                f"Fields {seen[start]!r} and {edit.path!r} address the same value"
            )
        seen[start] = edit.path
        if node.value == edit.value:
            continue
        spans.append((start, end, _render_scalar(node, edit.value)))
        changes.append(FieldChange(path=edit.path, old=node.value, new=edit.value))

    new_text = text
    for start, end, rendered in sorted(spans, reverse=True):
        new_text = new_text[:start] + rendered + new_text[end:]

    for edit in edits:
        if read_field(new_text, edit.path) != edit.value:
            raise DescriptorEditError(f"Rewrite of {edit.path!r} did not take effect")

    return EditResult(text=new_text, changes=tuple(changes))
