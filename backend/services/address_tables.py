"""
Lookup tables for address normalization.

Kept as plain data so they can be extended without touching the regex logic
in services.query_normalizer.
"""
from __future__ import annotations

from typing import Tuple

# Segments containing any of these (case-insensitive) are administrative noise:
# region, province or country names.
ADMIN_TOKENS: Tuple[str, ...] = (
    "región",
    "region",
    "provincia",
    "metropolitana",
    "chile",
)

# Words that mark a query as already carrying a street type.
STREET_TYPE_WORDS: Tuple[str, ...] = (
    "avenida",
    "avda",
    "av",
    "calle",
    "pasaje",
    "pje",
    "camino",
    "ruta",
    "autopista",
    "alameda",
    "costanera",
)

# Prefixes tried for a bare "<name> <number>" query (avenue, street, alley, road).
STREET_TYPE_VARIANTS: Tuple[str, ...] = ("Avenida", "Calle", "Pasaje", "Camino")

# Leading abbreviation -> canonical street-type word. Longer forms first so
# "Avda" wins over "Av".
STREET_ABBREVIATIONS: Tuple[Tuple[str, str], ...] = (
    ("Avda", "Avenida"),
    ("Av", "Avenida"),
    ("Pje", "Pasaje"),
    ("Gral", "General"),
    ("Bvar", "Bulevar"),
    ("Bulev", "Bulevar"),
    ("Bv", "Bulevar"),
    ("C", "Calle"),
)

# Colloquial short name -> canonical long name.
SYNONYMS: Tuple[Tuple[str, str], ...] = (
    ("gran avenida", "Gran Avenida José Miguel Carrera"),
    ("alameda", "Avenida Libertador Bernardo O'Higgins"),
    ("vespucio", "Américo Vespucio"),
)

# Placemark attributes tried, in order, for the locality (comuna).
LOCALITY_FIELDS: Tuple[str, ...] = (
    "city",
    "town",
    "village",
    "municipality",
    "county",
    "district",
)
