from __future__ import annotations

import json
import logging
import sqlite3
import uuid

from ..providers.base import Provider, VariableDefinition

logger = logging.getLogger(__name__)

UNIT_GROUPS = {
    "%": "percentage",
    "°C": "temperature",
    "bpm": "heart_rate",
    "seconds": "time",
    "kcal": "energy",
    "score": "score",
    "kg": "mass",
}

CONVERTIBLE_UNITS = {
    "seconds": ["seconds", "minutes", "hours"],
    "°C": ["°C", "°F"],
    "kcal": ["kcal", "kJ"],
    "kg": ["kg", "lb", "g"],
}


def unit_group(unit: str) -> str:
    return UNIT_GROUPS.get(unit, "count")


def convertible_units(unit: str) -> list[str]:
    return CONVERTIBLE_UNITS.get(unit, [unit])


def default_display_unit(definition: VariableDefinition) -> str:
    if definition.unit == "seconds":
        return "minutes" if "latency" in definition.slug else "hours"
    return definition.unit


def ensure_variables(
    conn: sqlite3.Connection,
    *,
    provider: Provider,
    user_id: str,
) -> dict[str, str]:
    """Upsert every provider variable by label and return {slug: variable_id}."""

    variable_ids: dict[str, str] = {}
    for definition in provider.variables:
        conn.execute(
            """INSERT INTO variables
               (
                 id,
                 slug,
                 label,
                 description,
                 data_type,
                 canonical_unit,
                 unit_group,
                 convertible_units,
                 default_display_unit,
                 source_type,
                 category,
                 created_by,
                 is_active
               )
               VALUES (?, ?, ?, ?, 'continuous', ?, ?, ?, ?, ?, ?, ?, 1)
               ON CONFLICT(label) DO UPDATE SET
                 slug=excluded.slug,
                 description=excluded.description,
                 canonical_unit=excluded.canonical_unit,
                 unit_group=excluded.unit_group,
                 convertible_units=excluded.convertible_units,
                 default_display_unit=excluded.default_display_unit,
                 source_type=excluded.source_type,
                 category=excluded.category,
                 is_active=1""",
            (
                str(uuid.uuid4()),
                definition.slug,
                definition.label,
                f"{definition.label} measured by {provider.display_name}",
                definition.unit,
                unit_group(definition.unit),
                json.dumps(convertible_units(definition.unit)),
                default_display_unit(definition),
                provider.name,
                definition.category,
                user_id,
            ),
        )
        row = conn.execute(
            "SELECT id FROM variables WHERE label=?",
            (definition.label,),
        ).fetchone()
        variable_ids[definition.slug] = row["id"]
    conn.commit()
    logger.debug("%d %s variables ready", len(variable_ids), provider.name)
    return variable_ids
