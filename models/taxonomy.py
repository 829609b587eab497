"""Category taxonomy for civic issue reports.

The taxonomy is a closed set of main categories. Each category carries the
keywords used by the deterministic keyword classifier and a priority
(1 = highest) that scales keyword strength: priority-1 categories need less
raw keyword evidence to win than the catch-all ``Other``.

Any category name produced elsewhere (remote model output, stored records)
is coerced into this set with ``map_to_standard_category``; unknown names
become ``Other``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class MainCategory(str, Enum):
    """Main report categories, valued by their display names."""

    ROAD = "Road & Infrastructure"
    WATER = "Water & Sewerage"
    WASTE = "Waste Management"
    LIGHTING = "Street Lighting & Electrical"
    SAFETY = "Public Safety & Order"
    OTHER = "Other"


@dataclass(frozen=True)
class Category:
    """Immutable taxonomy entry."""

    name: MainCategory
    keywords: tuple[str, ...]
    priority: int


TAXONOMY: dict[MainCategory, Category] = {
    MainCategory.ROAD: Category(
        name=MainCategory.ROAD,
        priority=1,
        keywords=(
            # Road surface
            "pothole", "potholes", "sinkhole", "hole in road", "road crack", "surface crack",
            "damaged road", "broken road", "uneven surface", "road erosion", "road collapse",
            "road subsidence", "worn pavement", "rough road", "bumpy road", "crater",
            "asphalt damage", "concrete crack", "pavement failure", "road deterioration",
            "surface depression", "road rut", "rutting", "alligator cracking", "edge cracking",
            # Footpaths
            "broken footpath", "damaged sidewalk", "missing tiles", "crack on footpath",
            "uneven pavement", "trip hazard", "broken kerb", "damaged curb", "walkway damage",
            "pedestrian path", "footway", "pavement slab", "paving stone", "sidewalk repair",
            "footpath obstruction", "walkway blocked", "pedestrian safety",
            # Manholes and utility covers
            "manhole cover missing", "open manhole", "sunken manhole", "protruding manhole",
            "manhole cover displaced", "utility cover missing", "access cover", "drain cover",
            "inspection chamber", "utility access", "roadway opening", "street opening",
            # Obstructions
            "road blockage", "obstruction on road", "fallen tree on road", "road debris",
            "construction debris on road", "abandoned vehicle", "illegal parking on road",
            "roadway obstruction", "traffic obstruction", "vehicle breakdown", "cargo spill",
            "construction equipment", "barricade", "road closure", "lane blocked",
            # Bridges and structures
            "bridge damage", "damaged bridge", "collapsed bridge", "structural failure",
            "damaged viaduct", "pier damage", "embankment breach", "retaining wall",
            "guardrail damage", "barrier damage", "overpass", "underpass", "tunnel damage",
            "infrastructure collapse", "structural crack", "foundation failure",
            # Markings and signage
            "faded road markings", "missing lane markings", "zebra crossing faded",
            "road sign damaged", "signpost bent", "traffic sign missing", "road paint",
            "lane divider", "center line", "edge line", "crosswalk marking",
        ),
    ),
    MainCategory.WATER: Category(
        name=MainCategory.WATER,
        priority=1,
        keywords=(
            # Leaks and bursts
            "water leak", "burst pipe", "pipe leak", "water main break", "pipeline leak",
            "pipeline burst", "water overflow", "flooding", "water logging", "standing water",
            "burst water main", "water gushing", "water spray", "pipe rupture", "water wastage",
            "supply line break", "distribution pipe", "service line", "water main", "hydrant leak",
            "valve leak", "meter leak", "connection leak", "joint failure", "pipe failure",
            # Sewage
            "sewage leak", "sewer leak", "raw sewage", "sewage overflow", "sewer blockage",
            "clogged sewer", "sewerage", "sewer line", "sewage line", "toilet overflow",
            "septic overflow", "waste water", "effluent", "sewage backup", "sewer backup",
            "manhole sewage", "sewage smell", "sewage on road", "sewage in drain",
            # Drainage
            "drain", "blocked drain", "clogged drain", "choked drain", "overflowing drain",
            "open drain", "damaged drain", "drain collapse", "garbage in drain",
            "drain cover missing", "drainage blockage", "waterlogged area", "storm drain",
            "surface drainage", "roadside drain", "kerb drain", "gutter", "channel",
            "culvert", "inlet blocked", "outlet blocked", "drainage pipe", "catch basin",
            "stormwater", "rainwater drainage", "surface water", "puddle", "water accumulation",
            # Sanitation facilities
            "public toilet", "unclean public toilet", "dirty urinal", "filthy restroom",
            "toilet block", "sanitation", "public health hazard", "foul smell", "bad odour",
            "restroom", "washroom", "lavatory", "public convenience", "comfort station",
            "toilet facility", "sanitary facility", "hygiene issue", "cleaning required",
        ),
    ),
    MainCategory.WASTE: Category(
        name=MainCategory.WASTE,
        priority=1,
        keywords=(
            # General waste
            "garbage", "trash", "rubbish", "refuse", "debris", "waste", "litter",
            "scattered waste", "dump", "dumping", "illegal dumping", "waste heap",
            "junk", "debris pile", "waste pile", "trash pile", "garbage pile",
            "littering", "fly tipping", "waste disposal", "garbage disposal",
            # Bins and collection
            "dustbin", "waste bin", "garbage bin", "overflowing bin", "broken bin",
            "full dustbin", "bin without lid", "collection point", "uncollected garbage",
            "missed collection", "no garbage pickup", "trash can", "waste container",
            "dumpster", "skip", "wheelie bin", "recycling bin", "compost bin",
            "bin collection", "waste collection", "garbage collection", "refuse collection",
            # Waste types
            "plastic waste", "construction debris", "medical waste", "e-waste",
            "organic waste pile", "burnt waste", "hazardous waste", "toxic waste",
            "food waste", "garden waste", "electronic waste", "battery waste",
            "chemical waste", "industrial waste", "demolition waste", "bulk waste",
            "white goods", "appliance disposal", "furniture dumping",
            # Locations
            "riverbank waste", "railway track garbage", "roadside dumping", "park litter",
            "beach litter", "market waste", "commercial waste", "household waste",
            "street cleaning", "litter picking", "waste segregation", "recycling issue",
        ),
    ),
    MainCategory.LIGHTING: Category(
        name=MainCategory.LIGHTING,
        priority=2,
        keywords=(
            # Street lights
            "street light", "streetlight", "lamp post", "light pole", "lighting pole",
            "flickering light", "broken light", "dark street", "no street lighting",
            "poor lighting", "nonworking light", "bulb out", "lamp not working",
            "street lamp", "public lighting", "road lighting", "pathway lighting",
            "led light", "sodium light", "halogen lamp", "fluorescent light",
            "light fixture", "luminaire", "lighting unit", "outdoor lighting",
            # Traffic signals
            "traffic light", "traffic signal", "signal failure", "red light not working",
            "green light failure", "broken traffic light", "signal malfunction",
            "traffic control", "pedestrian signal", "crossing signal", "stop light",
            "amber light", "signal timing", "signal box", "traffic controller",
            # Power
            "power outage", "power cut", "no electricity", "power failure", "voltage fluctuation",
            "blackout", "brownout", "electrical fault", "current failure", "supply failure",
            "electricity problem", "power supply", "electrical supply", "grid failure",
            "load shedding", "power interruption", "electrical outage",
            # Wiring
            "exposed wire", "dangling wire", "loose wire", "faulty connection",
            "electrical cable", "overhead wire", "underground cable", "junction box",
            "electrical panel", "distribution box", "wire hanging", "cable fault",
            "insulation failure", "short circuit", "electrical hazard", "live wire",
            # Poles
            "electric pole", "utility pole", "fallen pole", "broken pole", "tilted pole",
            "leaning pole", "damaged pole", "telegraph pole", "power line pole",
            "transmission pole", "distribution pole", "pole foundation", "guy wire",
            # Equipment
            "transformer", "damaged transformer", "sparking transformer", "electrical equipment",
            "switchgear", "electrical cabinet", "meter box", "electrical meter",
            "power meter", "junction", "electrical joint", "insulator", "electrical fitting",
        ),
    ),
    MainCategory.SAFETY: Category(
        name=MainCategory.SAFETY,
        priority=3,
        keywords=(
            # Animals
            "stray dog", "animal menace", "dog bite", "stray cattle", "monkey menace",
            "dead animal", "animal carcass", "snake found", "wild animal", "street dog",
            "feral cat", "stray puppy", "rabid animal", "animal attack", "aggressive animal",
            "livestock on road", "cattle menace", "pig menace", "goat on road",
            "animal nuisance", "pet abandonment", "animal control", "animal removal",
            # Public nuisance
            "public nuisance", "open defecation", "public urination", "noise pollution",
            "loud music", "drug abuse", "public intoxication", "loitering", "vagrancy",
            "antisocial behavior", "disturbance", "public disorder", "harassment",
            "begging", "aggressive begging", "panhandling", "soliciting",
            # Vendors
            "illegal vendor", "unauthorized stall", "street vendor", "hawker",
            "roadside vendor", "pavement vendor", "illegal shop", "unauthorized shop",
            "vendor encroachment", "commercial encroachment", "market encroachment",
            "stall without permit", "unlicensed vendor", "mobile vendor",
            # Construction
            "illegal construction", "unauthorized construction", "encroachment",
            "building violation", "zoning violation", "unauthorized structure",
            "illegal building", "unpermitted construction", "code violation",
            "setback violation", "height violation", "occupancy violation",
            # Advertising
            "illegal hoarding", "illegal banner", "unauthorized billboard",
            "illegal advertising", "poster defacement", "wall advertising",
            "unauthorized signage", "banner without permit", "hoarding violation",
            "outdoor advertising violation", "sign violation",
            # Vandalism
            "vandalism", "graffiti", "property damage", "defacement", "wall writing",
            "public property damage", "facility damage", "equipment damage",
            "destruction of property", "malicious damage", "civic property damage",
            # Hazards
            "unsafe building", "gas leak", "chemical spill", "industrial accident",
            "public safety hazard", "fire hazard", "electrical hazard", "structural hazard",
            "environmental hazard", "toxic exposure", "air pollution", "water contamination",
            "industrial pollution", "factory emission", "chemical leak", "gas escape",
        ),
    ),
    MainCategory.OTHER: Category(
        name=MainCategory.OTHER,
        priority=4,
        keywords=(
            "other", "miscellaneous", "general issue", "undefined", "unclear",
            "mixed issues", "multiple problems", "complex issue", "unclassified",
            "community center", "park maintenance", "playground", "sports facility",
            "cemetery", "crematorium", "market maintenance", "bus stop",
            "public bench", "statue maintenance", "monument", "public art",
            "permit issue", "documentation", "certificate", "license problem",
            "government office", "public service", "information request",
            "flagged content", "inappropriate report", "spam", "test report",
            "duplicate report", "unclear image", "requires review",
        ),
    ),
}

CATEGORY_NAMES: tuple[str, ...] = tuple(c.value for c in MainCategory)

# Coarse fallbacks for free-text labels that contain no taxonomy keyword
_CATEGORY_PATTERNS: dict[MainCategory, re.Pattern[str]] = {
    MainCategory.ROAD: re.compile(
        r"road|street|pavement|footpath|sidewalk|bridge|pothole|manhole|infrastructure|construction",
        re.IGNORECASE,
    ),
    MainCategory.WATER: re.compile(r"water|sewer|drain|pipe|leak|flood|sewage|toilet", re.IGNORECASE),
    MainCategory.WASTE: re.compile(r"garbage|waste|trash|bin|dump|litter|refuse", re.IGNORECASE),
    MainCategory.LIGHTING: re.compile(r"light|electric|power|lamp|signal|pole|wire", re.IGNORECASE),
    MainCategory.SAFETY: re.compile(r"animal|dog|safety|illegal|vendor|nuisance|hazard", re.IGNORECASE),
}


def get_category(name: MainCategory) -> Category:
    """Return the taxonomy entry for a main category."""
    return TAXONOMY[name]


def match_category_name(value: str | None) -> MainCategory | None:
    """Exact, case-insensitive match against taxonomy names."""
    if not value:
        return None
    normalized = str(value).strip().lower()
    for category in MainCategory:
        if normalized == category.value.lower():
            return category
    return None


def map_to_standard_category(value: str | MainCategory | None) -> MainCategory:
    """Coerce a free-text category label into the taxonomy.

    Order: exact name match, keyword containment, coarse regex patterns,
    then ``Other``.
    """
    if isinstance(value, MainCategory):
        return value
    exact = match_category_name(value)
    if exact is not None:
        return exact
    if not value:
        return MainCategory.OTHER

    normalized = str(value).strip().lower()
    for category, entry in TAXONOMY.items():
        for keyword in entry.keywords:
            if keyword in normalized:
                return category

    for category, pattern in _CATEGORY_PATTERNS.items():
        if pattern.search(normalized):
            return category

    logger.debug("Unmapped category label; defaulting to Other | value=%s", value)
    return MainCategory.OTHER
