"""Tests for laad.templates."""

import pytest

from laad.templates import NodeTemplate, PortTemplate, TemplateLibrary, load_template_data
from laad.types import ObjectRef


EXTRA_TEMPLATES = '''
classes:
  Camera: Component

templates:
  studio.capture:
    description: Grabs a frame.
    ports:
      - {name: trigger, direction: in, kind: impulse}
      - {name: camera, direction: in, type: Camera}
      - {name: frame, direction: out, type: string}
'''


class TestBuiltinLibrary:

    def test_core_templates_present(self, library):
        for path in (
            "logix.display",
            "logix.input.value",
            "logix.flow.if",
            "logix.flow.while",
            "logix.operators.conditional",
            "logix.variables.local",
            "logix.actions.write",
        ):
            assert path in library

    def test_port_order(self, library):
        flow_if = library.get("logix.flow.if")
        assert [p.name for p in flow_if.ports] == ["trigger", "condition", "on_true", "on_false"]
        assert [p.name for p in flow_if.outputs] == ["on_true", "on_false"]

    def test_impulse_defaults(self, library):
        trigger = library.get("logix.flow.while").port("trigger")
        assert trigger.kind == "impulse"
        assert trigger.type == "impulse"
        assert not trigger.required

    def test_data_inputs_required_by_default(self, library):
        assert library.get("logix.display").port("value").required
        assert library.get("logix.display").port("value").type == "dummy"

    def test_anchor_shared_ports(self, library):
        sub = library.get("logix.operators.sub")
        assert [p.name for p in sub.ports] == ["a", "b", "value"]
        assert sub.constraint == "numeric"

    def test_operator_lookup_by_arity(self, library):
        assert library.operator("-", 2).path == "logix.operators.sub"
        assert library.operator("-", 1).path == "logix.operators.negate"
        assert library.operator("<=>", 2).path == "logix.operators.cmp"

    def test_unknown_operator(self, library):
        with pytest.raises(KeyError):
            library.operator("**", 2)

    def test_classes_feed_lattice(self, library):
        assert library.lattice.is_subtype(ObjectRef("Slot"), ObjectRef("Worker"))

    def test_arity(self, library):
        assert library.get("logix.actions.write").arity == 2
        assert library.get("logix.events.on_start").arity == 0


class TestExtending:

    def test_load_extra_file(self, tmp_path):
        path = tmp_path / "studio.yaml"
        path.write_text(EXTRA_TEMPLATES, encoding="utf-8")
        library = TemplateLibrary.default([str(path)])
        assert "studio.capture" in library
        assert "logix.display" in library
        assert library.lattice.is_subtype(ObjectRef("Camera"), ObjectRef("Worker"))

    def test_default_is_not_shared(self, tmp_path):
        path = tmp_path / "studio.yaml"
        path.write_text(EXTRA_TEMPLATES, encoding="utf-8")
        TemplateLibrary.default([str(path)])
        assert "studio.capture" not in TemplateLibrary.default()

    def test_duplicate_template(self, library):
        with pytest.raises(ValueError, match="already registered"):
            library.register(library.get("logix.display"))

    def test_conflicting_class(self, library):
        with pytest.raises(ValueError, match="already declared"):
            library.add_classes({"Slot": "User"})

    def test_register_programmatically(self):
        library = TemplateLibrary()
        library.register(NodeTemplate(
            path="my.sink",
            ports=(PortTemplate(name="value", direction="in", type="int", required=True),),
        ))
        assert library.paths() == ["my.sink"]
        assert len(library) == 1


class TestValidation:

    @pytest.mark.parametrize("yaml_text, message", [
        ("templates:\n  t:\n    ports:\n      - {direction: in, type: int}", "missing a name"),
        ("templates:\n  t:\n    ports:\n      - {name: a, direction: sideways, type: int}", "invalid direction"),
        ("templates:\n  t:\n    ports:\n      - {name: a, direction: in, kind: wave, type: int}", "invalid kind"),
        ("templates:\n  t:\n    ports:\n      - {name: a, direction: in}", "has no type"),
        ("templates:\n  t:\n    constraint: shiny\n    ports: []", "unknown constraint"),
        ("templates:\n  t:\n    ports:\n      - {name: a, direction: in, type: int}\n      - {name: a, direction: out, type: int}", "port twice"),
        ("- just\n- a list", "must contain a mapping"),
    ])
    def test_rejects(self, yaml_text, message):
        with pytest.raises(ValueError, match=message):
            load_template_data(yaml_text)

    def test_empty_document(self):
        assert load_template_data("") == ([], {})
