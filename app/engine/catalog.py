"""
Ingredient Catalog

The authority on which ingredient identifiers are legal and what canonical
dose they carry. Bases are fixed-dose blends targeting a body system;
individuals are single-ingredient add-ons.

Matching is by exact name. The engine never stores an ingredient the
catalog does not recognize.
"""

import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, asdict

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class IngredientInfo:
    """A catalog entry with its canonical dose."""
    name: str
    dose_mg: int
    category: str  # "base" or "individual"
    dose_range_min: Optional[int] = None
    dose_range_max: Optional[int] = None
    type: str = ""  # Use-case categories, e.g. "Immune Support, Antioxidant"
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


# Bases: FIXED dosages, cannot be adjusted
BASE_FORMULAS: List[IngredientInfo] = [
    IngredientInfo("Adrenal Support", 420, "base",
                   description="Supports adrenal gland function and stress response."),
    IngredientInfo("Beta Max", 2500, "base",
                   description="Supports liver, gallbladder, and pancreas."),
    IngredientInfo("C Boost", 1680, "base",
                   description="Vitamin C and bioflavonoids with antioxidant properties."),
    IngredientInfo("Chaga Mix", 3600, "base",
                   description="Chaga mushroom blend supporting immune function."),
    IngredientInfo("Endocrine Support", 350, "base",
                   description="Pantothenic acid, manganese, and glandular sources."),
    IngredientInfo("Heart Support", 450, "base",
                   description="Magnesium, l-carnitine and l-taurine for heart function."),
    IngredientInfo("Histamine Support", 190, "base",
                   description="Helps stabilize mast cell membranes."),
    IngredientInfo("Immune-C", 430, "base",
                   description="Graviola, vitamin C, Camu Camu berry, and Cats Claw."),
    IngredientInfo("Kidney & Bladder Support", 400, "base",
                   description="Supports kidney and bladder function."),
    IngredientInfo("Ligament Support", 400, "base",
                   description="Supports muscles and connective tissue."),
    IngredientInfo("Liver Support", 480, "base",
                   description="Supports bile production and liver function."),
    IngredientInfo("Lung Support", 250, "base",
                   description="Supports lungs, lymph nodes and thymus."),
    IngredientInfo("MG/K", 540, "base",
                   description="Seven forms of magnesium bound in potassium."),
    IngredientInfo("Mold RX", 525, "base",
                   description="Oregano, Chaga and Sage for mold detoxification."),
    IngredientInfo("Ovary Uterus Support", 300, "base",
                   description="Supports the female reproductive system."),
    IngredientInfo("Para X", 500, "base",
                   description="Black walnut and wormwood parasite cleanse."),
    IngredientInfo("Prostate Support", 300, "base",
                   description="Supports prostate and male reproductive systems."),
    IngredientInfo("Spleen Support", 400, "base",
                   description="Dandelion and nettle for liver, kidney, and spleen."),
    IngredientInfo("Thyroid Support", 470, "base",
                   description="Iodine and glandular concentrates for thyroid function."),
]

# Individuals: adjustable within dose ranges
INDIVIDUAL_INGREDIENTS: List[IngredientInfo] = [
    IngredientInfo("Alfalfa", 200, "individual", 100, 1000, "Hormonal Support, Antioxidant"),
    IngredientInfo("Aloe Vera Powder", 250, "individual", 250, 250, "Digestive Health"),
    IngredientInfo("Ashwagandha", 600, "individual", 600, 600, "Stress Relief, Antioxidant"),
    IngredientInfo("Astragalus", 300, "individual", 300, 500, "Immune Support, Organ Health"),
    IngredientInfo("Blackcurrant Extract", 500, "individual", 500, 500, "Immune Support, Heart Health"),
    IngredientInfo("Broccoli Concentrate", 200, "individual", 100, 400, "Antioxidant & Detox Support"),
    IngredientInfo("Camu Camu", 2500, "individual", 2500, 2500, "Immune Support, Blood Sugar Support"),
    IngredientInfo("Cape Aloe", 15, "individual", 15, 30, "Digestive Health, Wound Healing"),
    IngredientInfo("Cats Claw", 30, "individual", 30, 500, "Immune Support, Antibacterial"),
    IngredientInfo("Chaga", 2000, "individual", 1000, 2000, "Antioxidant, Blood Sugar Support"),
    IngredientInfo("Cilantro", 200, "individual", 200, 500, "Detox, Antimicrobial"),
    IngredientInfo("Cinnamon 20:1", 1000, "individual", 500, 1000, "Blood Sugar Support"),
    IngredientInfo("CoEnzyme Q10", 200, "individual", 100, 200, "Heart Health, Antioxidant"),
    IngredientInfo("Colostrum Powder", 1000, "individual", 500, 1000, "Immune Support, Gut Health"),
    IngredientInfo("Fulvic Acid", 250, "individual", 250, 500, "Allergy Support, Brain Health"),
    IngredientInfo("GABA", 100, "individual", 100, 300, "Stress Management, Sleep"),
    IngredientInfo("Garlic", 200, "individual", 200, 200, "Antioxidant, Digestive Health"),
    IngredientInfo("Ginger Root", 500, "individual", 500, 2000, "Digestive Support"),
    IngredientInfo("Graviola", 500, "individual", 500, 1500, "Antioxidant, Immune Support"),
    IngredientInfo("Green Tea", 676, "individual", 676, 676, "Metabolism Support, Cognitive Function"),
    IngredientInfo("Glutathione", 600, "individual", 600, 600, "Antioxidant, Liver Health"),
    IngredientInfo("Hawthorn Berry", 50, "individual", 50, 100, "Heart Health, Circulation"),
    IngredientInfo("InnoSlim", 250, "individual", 250, 250, "Blood Sugar and Lipid Metabolism"),
    IngredientInfo("Lions Mane", 200, "individual", 200, 200, "Cognitive and Mental Health"),
    IngredientInfo("L-Theanine", 200, "individual", 200, 400, "Antioxidant / Wellbeing"),
    IngredientInfo("Milk Thistle", 420, "individual", 200, 420, "Liver Health / Detox"),
    IngredientInfo("NAD+", 100, "individual", 100, 300, "Anti-Aging / Cellular Health"),
    IngredientInfo("NMN", 250, "individual", 250, 250, "Anti-Aging / Cellular Health"),
    IngredientInfo("Red Ginseng", 200, "individual", 200, 400, "Immune Support / Energy"),
    IngredientInfo("Red Propolis", 500, "individual", 500, 500, "Immune & Inflammatory Support"),
    IngredientInfo("Rosemary", 100, "individual", 100, 600, "Brain Health / Skin & Hair Support"),
    IngredientInfo("Parsley", 100, "individual", 200, 800, "Bone Health / Antioxidant"),
    IngredientInfo("Phosphatidylcholine", 250, "individual", 250, 1200, "Brain & Liver Support"),
    IngredientInfo("Quercetin", 50, "individual", 50, 500, "Antioxidant / Heart Support"),
    IngredientInfo("Saw Palmetto Extract", 320, "individual", 320, 320, "Prostate Health"),
    IngredientInfo("Sceletium", 15, "individual", 15, 40, "Mood Support / Neurocognitive"),
    IngredientInfo("Shilajit", 300, "individual", 300, 300, "Energy & Immunity Support"),
    IngredientInfo("Stinging Nettle", 500, "individual", 500, 1500, "Antioxidant, Digestive Health"),
    IngredientInfo("Suma Root", 500, "individual", 500, 1500, "Adaptogen & Anti-Inflammatory"),
    IngredientInfo("Turmeric Root Extract 4:1", 400, "individual", 400, 1000, "Anti-inflammatory & Antioxidant"),
    IngredientInfo("Vitamin C", 90, "individual", 90, 90, "Antioxidant & Immune Support"),
    IngredientInfo("Vitamin E", 2000, "individual", 2000, 2000, "Antioxidant & Skin Nourishment"),
]


class IngredientCatalog:
    """In-process catalog resolver."""

    def __init__(self, ingredients: List[IngredientInfo] = None):
        if ingredients is None:
            ingredients = BASE_FORMULAS + INDIVIDUAL_INGREDIENTS
        self._by_name: Dict[str, IngredientInfo] = {i.name: i for i in ingredients}

    def get(self, name: str) -> Optional[IngredientInfo]:
        if not isinstance(name, str):
            return None
        return self._by_name.get(name)

    def is_valid_ingredient(self, name: str) -> bool:
        return self.get(name) is not None

    def get_dose(self, name: str) -> Optional[int]:
        info = self.get(name)
        return info.dose_mg if info else None

    def all(self) -> List[IngredientInfo]:
        return list(self._by_name.values())

    def bases(self) -> List[IngredientInfo]:
        return [i for i in self._by_name.values() if i.category == "base"]

    def individuals(self) -> List[IngredientInfo]:
        return [i for i in self._by_name.values() if i.category == "individual"]


class HttpIngredientCatalog(IngredientCatalog):
    """
    Catalog resolver backed by a remote catalog service.

    Loads `GET {base_url}/ingredients` once and caches it. When the service
    is unreachable every lookup answers "not found", so callers reject the
    ingredient rather than store something unverified.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.BaseTransport = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._by_name = None

    def _load(self) -> Dict[str, IngredientInfo]:
        if self._by_name is not None:
            return self._by_name

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}/ingredients")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Ingredient catalog unreachable at {self.base_url}: {e}")
            return {}

        items = data.get("ingredients", []) if isinstance(data, dict) else data
        catalog = {}
        for item in items:
            info = IngredientInfo(
                name=item["name"],
                dose_mg=int(item["dose_mg"]),
                category=item.get("category", "individual"),
                dose_range_min=item.get("dose_range_min"),
                dose_range_max=item.get("dose_range_max"),
                type=item.get("type", ""),
                description=item.get("description", ""),
            )
            catalog[info.name] = info
        self._by_name = catalog
        logger.info(f"Loaded {len(catalog)} ingredients from {self.base_url}")
        return catalog

    def get(self, name: str) -> Optional[IngredientInfo]:
        if not isinstance(name, str):
            return None
        return self._load().get(name)

    def all(self) -> List[IngredientInfo]:
        return list(self._load().values())

    def bases(self) -> List[IngredientInfo]:
        return [i for i in self._load().values() if i.category == "base"]

    def individuals(self) -> List[IngredientInfo]:
        return [i for i in self._load().values() if i.category == "individual"]


ingredient_catalog = IngredientCatalog()
_remote_catalog = None


def get_catalog() -> IngredientCatalog:
    """Remote catalog when configured, otherwise the built-in one."""
    global _remote_catalog
    settings = get_settings()
    if not settings.catalog_url:
        return ingredient_catalog
    if _remote_catalog is None or _remote_catalog.base_url != settings.catalog_url.rstrip("/"):
        _remote_catalog = HttpIngredientCatalog(
            settings.catalog_url,
            timeout=settings.catalog_timeout_seconds
        )
    return _remote_catalog
