"""
Known destination tables: their fields (used for mapping suggestions and
for bootstrapping destination tables) and their validation rule sets.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from import_hub.domain.imports.validation import ValidationRuleSet


@dataclass
class TargetTable:
    name: str
    label: str
    fields: List[str]
    rules: ValidationRuleSet = field(default_factory=ValidationRuleSet)


def _positive_number(message: str):
    def _check(value: Any, _row: Mapping[str, Any]) -> Optional[str]:
        try:
            number = float(str(value).strip())
        except ValueError:
            return message
        return message if number < 0 else None
    return _check


def _positive_integer(message: str, *, allow_zero: bool = False):
    def _check(value: Any, _row: Mapping[str, Any]) -> Optional[str]:
        try:
            number = int(float(str(value).strip()))
        except ValueError:
            return message
        if number < 0 or (number == 0 and not allow_zero):
            return message
        return None
    return _check


def _one_of(options: List[str], label: str):
    def _check(value: Any, _row: Mapping[str, Any]) -> Optional[str]:
        if str(value or "").strip().lower() not in options:
            return f"{label} must be one of: {', '.join(options)}"
        return None
    return _check


TARGET_TABLES: Dict[str, TargetTable] = {
    "productos": TargetTable(
        name="productos",
        label="Products",
        fields=["nombre", "descripcion", "precio", "stock_minimo", "categoria_id"],
        rules=ValidationRuleSet(
            required={"nombre", "precio"},
            numeric={"precio", "stock_minimo"},
            min_length={"nombre": 2},
            max_length={"nombre": 100, "descripcion": 500},
            custom_validators={
                "precio": _positive_number("Price must be a positive number"),
                "stock_minimo": _positive_integer("Minimum stock must be a positive integer", allow_zero=True),
            },
        ),
    ),
    "proveedores": TargetTable(
        name="proveedores",
        label="Suppliers",
        fields=["nombre", "contacto", "telefono", "email", "direccion"],
        rules=ValidationRuleSet(
            required={"nombre"},
            email={"email"},
            phone={"telefono"},
            min_length={"nombre": 2},
            max_length={"nombre": 100, "contacto": 100, "direccion": 200},
        ),
    ),
    "categorias": TargetTable(
        name="categorias",
        label="Categories",
        fields=["nombre", "descripcion"],
        rules=ValidationRuleSet(
            required={"nombre"},
            min_length={"nombre": 2},
            max_length={"nombre": 50, "descripcion": 200},
        ),
    ),
    "ubicaciones": TargetTable(
        name="ubicaciones",
        label="Locations",
        fields=["codigo", "nombre", "tipo", "capacidad_maxima"],
        rules=ValidationRuleSet(
            required={"codigo", "nombre"},
            numeric={"capacidad_maxima"},
            min_length={"codigo": 2, "nombre": 2},
            max_length={"codigo": 20, "nombre": 100},
            pattern={"codigo": r"^[A-Z0-9-]+$"},
            custom_validators={
                "tipo": _one_of(["estanteria", "piso", "refrigerado", "especial"], "Type"),
                "capacidad_maxima": _positive_integer("Maximum capacity must be a positive integer"),
            },
        ),
    ),
    "movimientos": TargetTable(
        name="movimientos",
        label="Stock movements",
        fields=["producto_id", "tipo", "cantidad", "ubicacion_origen", "ubicacion_destino", "fecha", "observaciones"],
        rules=ValidationRuleSet(
            required={"producto_id", "tipo", "cantidad"},
            numeric={"producto_id", "cantidad"},
            date={"fecha"},
            max_length={"observaciones": 500},
            allowed_values={"tipo": ["entrada", "salida", "transferencia", "ajuste"]},
            custom_validators={
                "cantidad": _positive_integer("Quantity must be a positive integer"),
            },
        ),
    ),
}


def get_rule_set(name: str) -> ValidationRuleSet:
    """Rule set for a target table; unknown tables get an empty rule set."""
    table = TARGET_TABLES.get(name)
    return table.rules if table else ValidationRuleSet()


def get_known_fields(name: str) -> List[str]:
    table = TARGET_TABLES.get(name)
    return list(table.fields) if table else []
