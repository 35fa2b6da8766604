"""
Tests for field mapping: representation, auto-suggestion and templates.
"""

import pytest

from import_hub.domain.imports.mapper import (
    FieldMapping,
    apply_template_mapping,
    map_rows,
    suggest_field_mapping,
    unmapped_fields_with_data,
)
from import_hub.domain.imports.tables import get_known_fields
from import_hub.domain.imports.templates import list_templates, mapping_from_template, save_template


class TestFieldMapping:
    def test_empty_target_means_unmapped(self):
        mapping = FieldMapping({"Nombre": "nombre", "Notas": "", "Extra": "   ", "Otro": None})
        assert mapping.to_dict() == {"Nombre": "nombre", "Notas": None, "Extra": None, "Otro": None}
        assert mapping.mapped_items() == [("Nombre", "nombre")]
        assert not mapping.is_mapped("Notas")

    def test_map_row_drops_unmapped_sources(self):
        mapping = FieldMapping({"Nombre": "nombre", "Precio": "precio", "Notas": None})
        row = {"Nombre": "Tornillo", "Precio": "10", "Notas": "ignorar"}
        assert mapping.map_row(row) == {"nombre": "Tornillo", "precio": "10"}

    def test_identity_mapping_preserves_values(self):
        rows = [{"codigo": "P1", "nombre": "Tornillo", "precio": 10.5}, {"codigo": "P2", "nombre": "", "precio": "x"}]
        mapping = FieldMapping({header: header for header in ("codigo", "nombre", "precio")})
        assert map_rows(rows, mapping) == rows

    def test_missing_source_maps_to_none(self):
        mapping = FieldMapping({"Nombre": "nombre", "Precio": "precio"})
        assert mapping.map_row({"Nombre": "A"}) == {"nombre": "A", "precio": None}

    def test_sources_for(self):
        mapping = FieldMapping({"Product Name": "nombre", "Nombre corto": "nombre", "Notas": None})
        assert mapping.sources_for("nombre") == ["Product Name", "Nombre corto"]
        assert mapping.sources_for("precio") == []

    def test_unmapped_fields_with_data(self):
        mapping = FieldMapping({"Nombre": "nombre", "Notas": None})
        assert unmapped_fields_with_data({"Nombre": "A", "Notas": "x", "Vacio": "  "}, mapping) == ["Notas"]


class TestSuggestFieldMapping:
    def test_case_insensitive_substring_either_direction(self):
        headers = ["  NOMBRE ", "Precio Unitario", "desc", "Color"]
        suggestion = suggest_field_mapping(headers, get_known_fields("productos"))

        assert suggestion.target_for("  NOMBRE ") == "nombre"
        # Known field contained in the header.
        assert suggestion.target_for("Precio Unitario") == "precio"
        # Header contained in the known field.
        assert suggestion.target_for("desc") == "descripcion"
        assert suggestion.target_for("Color") is None

    def test_first_match_wins(self):
        suggestion = suggest_field_mapping(["id"], ["categoria_id", "producto_id"])
        assert suggestion.target_for("id") == "categoria_id"

    def test_blank_header_stays_unmapped(self):
        suggestion = suggest_field_mapping(["", "   "], ["nombre"])
        assert suggestion.mapped_items() == []

    def test_unknown_table_suggests_nothing(self):
        suggestion = suggest_field_mapping(["nombre"], get_known_fields("no_such_table"))
        assert suggestion.to_dict() == {"nombre": None}


class TestTemplates:
    def test_apply_template_only_uses_present_headers(self):
        mapping = apply_template_mapping(["Nombre", "Costo"], {"Nombre": "nombre", "Precio": "precio"})
        assert mapping.to_dict() == {"Nombre": "nombre", "Costo": None}

    def test_saved_template_prefills_mapping(self):
        template = save_template(
            user_id="user-1",
            name="Productos proveedor A",
            target_table="productos",
            field_mapping={"Nombre": "nombre"},
        )

        mapping = mapping_from_template(template["id"], ["Nombre", "Precio"])

        assert mapping is not None
        assert mapping.target_for("Nombre") == "nombre"
        assert mapping.target_for("Precio") is None

    def test_applying_template_counts_usage(self):
        template = save_template(
            user_id="user-1", name="t", target_table="productos", field_mapping={"Nombre": "nombre"}
        )
        mapping_from_template(template["id"], ["Nombre"])
        mapping_from_template(template["id"], ["Nombre"])

        [stored] = list_templates("user-1")
        assert stored["usage_count"] == 2

    def test_missing_template_returns_none(self):
        assert mapping_from_template("missing", ["Nombre"]) is None

    def test_list_templates_includes_public_ones(self):
        save_template(user_id="user-1", name="own", target_table="productos", field_mapping={})
        save_template(user_id="user-2", name="shared", target_table="productos", field_mapping={}, is_public=True)
        save_template(user_id="user-2", name="private", target_table="productos", field_mapping={})
        save_template(user_id="user-1", name="other table", target_table="proveedores", field_mapping={})

        names = {template["name"] for template in list_templates("user-1", target_table="productos")}
        assert names == {"own", "shared"}

    @pytest.mark.parametrize("headers", [["Nombre"], ["Nombre", "Extra"]])
    def test_scenario_template_header_match(self, headers):
        template = save_template(
            user_id="u", name="tpl", target_table="categorias", field_mapping={"Nombre": "nombre"}
        )
        assert mapping_from_template(template["id"], headers).target_for("Nombre") == "nombre"
