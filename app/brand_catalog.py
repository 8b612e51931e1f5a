import re

# Keyed by normalized imprint text; iteration order decides ties.
COMMON_REGIONAL_BRANDS = {
    "crocin": {"brand": "Crocin", "generic": ["Paracetamol"], "uses": ["Fever", "Pain relief"], "strength": "500mg"},
    "combiflam": {
        "brand": "Combiflam",
        "generic": ["Paracetamol", "Ibuprofen"],
        "uses": ["Pain relief", "Fever", "Inflammation"],
        "strength": "325mg+400mg",
    },
    "azithral": {"brand": "Azithral", "generic": ["Azithromycin"], "uses": ["Bacterial infections"], "strength": "500mg"},
    "augmentin": {
        "brand": "Augmentin",
        "generic": ["Amoxicillin", "Clavulanic acid"],
        "uses": ["Bacterial infections"],
        "strength": "625mg",
    },
    "amox": {"brand": "Amox", "generic": ["Amoxicillin"], "uses": ["Bacterial infections"], "strength": "500mg"},
    "calpol": {"brand": "Calpol", "generic": ["Paracetamol"], "uses": ["Fever", "Pain relief"], "strength": "500mg"},
    "dolo": {"brand": "Dolo 650", "generic": ["Paracetamol"], "uses": ["Fever", "Pain relief"], "strength": "650mg"},
    "metrogyl": {
        "brand": "Metrogyl",
        "generic": ["Metronidazole"],
        "uses": ["Bacterial infections", "Protozoal infections"],
        "strength": "400mg",
    },
    "zerodol": {"brand": "Zerodol", "generic": ["Aceclofenac"], "uses": ["Pain", "Inflammation"], "strength": "100mg"},
    "ultracet": {
        "brand": "Ultracet",
        "generic": ["Tramadol", "Paracetamol"],
        "uses": ["Severe pain"],
        "strength": "325mg+37.5mg",
    },
    "ciplox": {"brand": "Ciplox", "generic": ["Ciprofloxacin"], "uses": ["Bacterial infections"], "strength": "500mg"},
    "nexpro": {"brand": "Nexpro", "generic": ["Esomeprazole"], "uses": ["Acid reflux", "GERD"], "strength": "40mg"},
    "pan": {"brand": "Pan 40", "generic": ["Pantoprazole"], "uses": ["Acid reflux", "GERD"], "strength": "40mg"},
    "histac": {"brand": "Histac", "generic": ["Ranitidine"], "uses": ["Acid reflux", "Ulcer"], "strength": "150mg"},
    "avil": {"brand": "Avil", "generic": ["Pheniramine maleate"], "uses": ["Allergies"], "strength": "25mg"},
    "benadryl": {"brand": "Benadryl", "generic": ["Diphenhydramine"], "uses": ["Allergies", "Cold"], "strength": "25mg"},
    "chymoral": {
        "brand": "Chymoral",
        "generic": ["Trypsin", "Chymotrypsin"],
        "uses": ["Inflammation", "Swelling"],
        "strength": "100000AU",
    },
    "movicol": {"brand": "Movicol", "generic": ["Macrogol"], "uses": ["Constipation"], "strength": "13.8g"},
    "envirin": {
        "brand": "Envirin",
        "generic": ["Ofloxacin", "Ornidazole"],
        "uses": ["Bacterial infections"],
        "strength": "500mg+500mg",
    },
    "montec": {
        "brand": "Montec LC",
        "generic": ["Montelukast", "Levocetirizine"],
        "uses": ["Allergies", "Asthma"],
        "strength": "10mg+5mg",
    },
}

MIN_PARTIAL_IMPRINT_LENGTH = 3


def normalize_imprint(imprint: str | None) -> str:
    return re.sub(r"[^a-z0-9]", "", (imprint or "").lower())


def lookup_by_imprint(imprint: str | None) -> dict | None:
    """First entry whose key appears in the imprint, or that contains it.

    The reverse direction (key contains imprint) needs at least three
    characters so stray marks like "5" or "PA" do not match everything.
    """
    normalized = normalize_imprint(imprint)
    if not normalized:
        return None
    for key, entry in COMMON_REGIONAL_BRANDS.items():
        if key in normalized:
            return dict(entry, key=key)
        if len(normalized) >= MIN_PARTIAL_IMPRINT_LENGTH and normalized in key:
            return dict(entry, key=key)
    return None
