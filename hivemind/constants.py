from __future__ import annotations

"""Shared keyword lists used across the pipeline heuristics.

Vocabularies are Portuguese because tender descriptions and marketplace
listings are; matching is done on lower-cased text.
"""

LOW_COMPLEXITY_KEYWORDS = [
    "lápis",
    "caneta",
    "papel",
    "borracha",
    "grampo",
    "clips",
    "envelope",
    "água",
    "café",
    "açúcar",
    "copo",
    "guardanapo",
    "sabão",
    "detergente",
    "vassoura",
    "pano",
    "balde",
    "escova",
    "pasta",
    "fichário",
    "caderno",
]

HIGH_COMPLEXITY_KEYWORDS = [
    "digital",
    "eletrônico",
    "programável",
    "automático",
    "computador",
    "impressora",
    "monitor",
    "sirene",
    "sensor",
    "câmera",
    "servidor",
    "músicas",
    "memória",
    "gb",
    "tb",
    "processador",
    "bateria",
    "bivolt",
    "instrumento",
    "hospitalar",
    "laborat",
    "científico",
    "médico",
]

# Specs that every seller claims; useless for telling products apart.
GENERIC_SPEC_TERMS = [
    "bivolt",
    "110v",
    "220v",
    "plástico",
    "metal",
    "novo",
    "original",
    "garantia",
    "nf",
    "nota fiscal",
    "sem uso",
    "lacrado",
]

MARKETPLACE_NOISE_WORDS = {
    "aquisição",
    "de",
    "para",
    "com",
    "em",
    "ao",
    "do",
    "da",
    "dos",
    "das",
    "o",
    "a",
    "os",
    "as",
    "um",
    "uma",
    "uns",
    "umas",
    "e",
    "ou",
    "que",
    "tipo",
    "modelo",
    "marca",
    "conforme",
    "especificação",
    "técnica",
    "segundo",
    "contendo",
    "composto",
    "aproximadamente",
}

# Unit suffixes recognised by the fallback extractor after a number.
NUMERIC_UNIT_SUFFIXES = [
    "gb",
    "mb",
    "tb",
    "mah",
    "watts",
    "w",
    "kg",
    "g",
    "ml",
    "l",
    "cm",
    "mm",
    "m",
    "pol",
    '"',
    "v",
    "a",
    "hz",
]

# Result pages that point at manufacturers or datasheets.
SCOUT_PRIORITY_PATTERNS = [
    r"\.com\.br",
    r"fabricante",
    r"manual",
    r"ficha.*t[ée]cnica",
    r"datasheet",
    r"spec[- ]?sheet",
    r"especifica[çc]",
    r"catalogo|catálogo",
]

# Marketplaces and social networks never identify a manufacturer.
SCOUT_EXCLUDED_DOMAINS = [
    "mercadolivre",
    "mercadolibre",
    "amazon",
    "shopee",
    "aliexpress",
    "olx",
    "magazineluiza",
    "americanas",
    "facebook",
    "instagram",
    "youtube",
    "tiktok",
    "twitter",
    "linkedin",
]
