"""Tests for structural descriptor edits — only the addressed value changes."""

from __future__ import annotations

import pytest

from harborline.gitops.descriptor import (
    DescriptorEditError,
    FieldEdit,
    PathSegment,
    apply_edits,
    parse_field_path,
    read_field,
)

from conftest import KUSTOMIZATION

HELM_VALUES = """\
# values for the shop chart
api:
  image:
    repository: registry.local/acme/api
    tag: 41        # bumped by the pipeline
  replicas: 3
web:
  image:
    repository: registry.local/acme/web
    tag: '41'
"""


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------


class TestParseFieldPath:
    def test_dotted_keys(self):
        assert parse_field_path("api.image.tag") == (
            PathSegment("api"),
            PathSegment("image"),
            PathSegment("tag"),
        )

    def test_selector_value_may_contain_dots_and_slashes(self):
        assert parse_field_path("images[name=registry.local/acme/api].newTag") == (
            PathSegment("images", ("name", "registry.local/acme/api")),
            PathSegment("newTag"),
        )

    def test_nested_selectors(self):
        segments = parse_field_path("spec.containers[name=api].env[name=VERSION].value")
        assert [s.key for s in segments] == ["spec", "containers", "env", "value"]
        assert segments[2].selector == ("name", "VERSION")

    @pytest.mark.parametrize(
        "bad", ["", "images[name=api", "images[name].newTag", "a..b", "images[name=x]newTag"]
    )
    def test_malformed(self, bad):
        with pytest.raises(DescriptorEditError):
            parse_field_path(bad)


# ---------------------------------------------------------------------------
# Reading and editing
# ---------------------------------------------------------------------------


class TestApplyEdits:
    def test_rewrites_only_the_addressed_value(self):
        result = apply_edits(
            KUSTOMIZATION, [FieldEdit("images[name=registry.local/acme/api].newTag", "42")]
        )
        assert result.changed
        expected = KUSTOMIZATION.replace(
            'newTag: "41"   # api version', 'newTag: "42"   # api version'
        )
        assert result.text == expected

    def test_prefix_named_image_untouched(self):
        """``acme/api`` must not match ``acme/api-gateway``."""
        result = apply_edits(
            KUSTOMIZATION, [FieldEdit("images[name=registry.local/acme/api].newTag", "42")]
        )
        assert read_field(result.text, "images[name=registry.local/acme/api-gateway].newTag") == "7"

    def test_several_edits_in_one_document(self):
        edits = [
            FieldEdit(f"images[name=registry.local/acme/{name}].newTag", "42")
            for name in ("api", "web", "db")
        ]
        result = apply_edits(KUSTOMIZATION, edits)
        assert [c.path for c in result.changes] == [e.path for e in edits]
        for edit in edits:
            assert read_field(result.text, edit.path) == "42"
        assert result.text.count('"42"') == 3
        assert result.text.startswith("# Production overlay")

    def test_value_already_present_is_noop(self):
        result = apply_edits(
            KUSTOMIZATION, [FieldEdit("images[name=registry.local/acme/web].newTag", "41")]
        )
        assert not result.changed
        assert result.text == KUSTOMIZATION

    def test_plain_integer_stays_plain(self):
        result = apply_edits(HELM_VALUES, [FieldEdit("api.image.tag", "42")])
        assert "    tag: 42        # bumped by the pipeline\n" in result.text
        assert result.text.replace("tag: 42 ", "tag: 41 ") == HELM_VALUES

    def test_single_quotes_kept(self):
        result = apply_edits(HELM_VALUES, [FieldEdit("web.image.tag", "42")])
        assert "    tag: '42'\n" in result.text

    def test_numeric_looking_value_quoted_when_field_was_string(self):
        text = "image:\n  tag: v1.2.0\n"
        result = apply_edits(text, [FieldEdit("image.tag", "43")])
        assert result.text == 'image:\n  tag: "43"\n'
        assert read_field(result.text, "image.tag") == "43"

    def test_value_needing_quotes(self):
        text = "image:\n  tag: old\n"
        result = apply_edits(text, [FieldEdit("image.tag", "a: b")])
        assert read_field(result.text, "image.tag") == "a: b"

    def test_missing_field(self):
        with pytest.raises(DescriptorEditError, match="not found"):
            apply_edits(KUSTOMIZATION, [FieldEdit("images[name=registry.local/acme/cache].newTag", "1")])

    def test_ambiguous_selection(self):
        text = "images:\n  - name: api\n    newTag: '1'\n  - name: api\n    newTag: '2'\n"
        with pytest.raises(DescriptorEditError, match="2 items match"):
            apply_edits(text, [FieldEdit("images[name=api].newTag", "3")])

    def test_non_scalar_target(self):
        with pytest.raises(DescriptorEditError, match="not a scalar"):
            apply_edits(HELM_VALUES, [FieldEdit("api.image", "42")])

    def test_same_value_addressed_twice(self):
        with pytest.raises(DescriptorEditError, match="same value"):
            apply_edits(
                HELM_VALUES,
                [FieldEdit("api.image.tag", "42"), FieldEdit("api.image.tag", "43")],
            )

    def test_invalid_yaml(self):
        with pytest.raises(DescriptorEditError, match="not valid YAML"):
            apply_edits("a: [unclosed\n", [FieldEdit("a", "1")])


class TestMultiDocument:
    TEXT = (
        "apiVersion: apps/v1\nkind: Deployment\nspec:\n  template:\n    spec:\n"
        "      containers:\n        - name: api\n          image: registry.local/acme/api:41\n"
        "---\napiVersion: v1\nkind: Service\nmetadata:\n  name: api\n"
    )

    def test_field_found_in_one_document(self):
        path = "spec.template.spec.containers[name=api].image"
        result = apply_edits(self.TEXT, [FieldEdit(path, "registry.local/acme/api:42")])
        assert read_field(result.text, path) == "registry.local/acme/api:42"
        assert result.text.endswith("---\napiVersion: v1\nkind: Service\nmetadata:\n  name: api\n")

    def test_field_in_several_documents_rejected(self):
        text = "a:\n  b: 1\n---\na:\n  b: 2\n"
        with pytest.raises(DescriptorEditError, match="2 documents"):
            read_field(text, "a.b")
