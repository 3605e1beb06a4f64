"""
E-waste category catalog.
"""

import logging
from typing import List, Optional

from schemas import EWASTE_CATEGORIES, EwasteCategory
from storage import Store

logger = logging.getLogger(__name__)

CATEGORY_SEED = [
    {"name": "Smartphones & Tablets", "slug": "smartphones", "description": "Mobile phones, tablets, e-readers", "icon_name": "Smartphone", "avg_weight_kg": 0.2, "green_credits_per_kg": 25, "co2_saved_per_kg": 2.5, "hazard_level": "medium", "estimated_value_per_kg": 15},
    {"name": "Laptops & Computers", "slug": "laptops", "description": "Laptops, desktops, monitors", "icon_name": "Laptop", "avg_weight_kg": 3.0, "green_credits_per_kg": 30, "co2_saved_per_kg": 3.0, "hazard_level": "medium", "estimated_value_per_kg": 12},
    {"name": "Batteries", "slug": "batteries", "description": "Li-ion, NiMH, Lead-acid batteries", "icon_name": "Battery", "avg_weight_kg": 0.5, "green_credits_per_kg": 40, "co2_saved_per_kg": 4.0, "hazard_level": "critical", "estimated_value_per_kg": 8},
    {"name": "Cables & Chargers", "slug": "cables", "description": "USB cables, power adapters, chargers", "icon_name": "Cable", "avg_weight_kg": 0.3, "green_credits_per_kg": 10, "co2_saved_per_kg": 1.0, "hazard_level": "low", "estimated_value_per_kg": 5},
    {"name": "TVs & Displays", "slug": "displays", "description": "LED/LCD TVs, monitors, projectors", "icon_name": "Monitor", "avg_weight_kg": 8.0, "green_credits_per_kg": 20, "co2_saved_per_kg": 2.0, "hazard_level": "high", "estimated_value_per_kg": 6},
    {"name": "Printers & Scanners", "slug": "printers", "description": "Inkjet, laser printers, scanners", "icon_name": "Printer", "avg_weight_kg": 5.0, "green_credits_per_kg": 15, "co2_saved_per_kg": 1.5, "hazard_level": "medium", "estimated_value_per_kg": 4},
    {"name": "Kitchen Appliances", "slug": "kitchen", "description": "Microwaves, toasters, blenders", "icon_name": "UtensilsCrossed", "avg_weight_kg": 4.0, "green_credits_per_kg": 12, "co2_saved_per_kg": 1.2, "hazard_level": "low", "estimated_value_per_kg": 3},
    {"name": "Audio & Wearables", "slug": "audio", "description": "Headphones, speakers, smartwatches", "icon_name": "Headphones", "avg_weight_kg": 0.3, "green_credits_per_kg": 20, "co2_saved_per_kg": 2.0, "hazard_level": "low", "estimated_value_per_kg": 10},
    {"name": "Gaming Consoles", "slug": "gaming", "description": "Consoles, controllers, VR headsets", "icon_name": "Gamepad2", "avg_weight_kg": 2.5, "green_credits_per_kg": 25, "co2_saved_per_kg": 2.5, "hazard_level": "low", "estimated_value_per_kg": 8},
    {"name": "Networking Equipment", "slug": "networking", "description": "Routers, modems, switches", "icon_name": "Wifi", "avg_weight_kg": 1.0, "green_credits_per_kg": 15, "co2_saved_per_kg": 1.5, "hazard_level": "low", "estimated_value_per_kg": 6},
]

CATEGORY_SLUGS = {c["slug"] for c in CATEGORY_SEED}


def seed_categories(store: Store) -> int:
    """Create the catalog entries that are missing. Returns how many were added."""
    existing = {c["id"] for c in store.query(EWASTE_CATEGORIES, order_by=None)}
    batch = store.batch()
    added = 0
    for category in CATEGORY_SEED:
        if category["slug"] in existing:
            continue
        batch.create(EWASTE_CATEGORIES, category, doc_id=category["slug"])
        added += 1
    batch.commit()
    if added:
        logger.info(f"Seeded {added} e-waste categories")
    return added


def list_categories(store: Store) -> List[EwasteCategory]:
    docs = store.query(EWASTE_CATEGORIES, order_by="name", descending=False)
    return [EwasteCategory.model_validate(d) for d in docs]


def get_category(store: Store, slug: str) -> Optional[EwasteCategory]:
    doc = store.get(EWASTE_CATEGORIES, slug)
    return EwasteCategory.model_validate(doc) if doc else None
