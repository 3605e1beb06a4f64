"""
Maps the ranked labels of a generic image classifier to an e-waste category.

The classifier runs on the donor's device and returns up to five
(label, probability) pairs, best first. classify() walks them in that order
and stops at the first keyword hit whose probability clears the threshold.
"""

import logging
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from errors import CapabilityError
from schemas import Prediction, ScanDecision

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.10

# Order matters: keys are tried in this order for every word.
EWASTE_LABEL_MAP = {
    # Smartphones & Tablets
    "cellular_telephone": ("Smartphones & Tablets", "smartphones"),
    "cell_phone": ("Smartphones & Tablets", "smartphones"),
    "smartphone": ("Smartphones & Tablets", "smartphones"),
    "iPod": ("Smartphones & Tablets", "smartphones"),
    "tablet": ("Smartphones & Tablets", "smartphones"),

    # Laptops & Computers
    "laptop": ("Laptops & Computers", "laptops"),
    "notebook": ("Laptops & Computers", "laptops"),
    "desktop_computer": ("Laptops & Computers", "laptops"),
    "monitor": ("Laptops & Computers", "laptops"),
    "screen": ("Laptops & Computers", "laptops"),
    "keyboard": ("Laptops & Computers", "laptops"),
    "mouse": ("Laptops & Computers", "laptops"),
    "computer_keyboard": ("Laptops & Computers", "laptops"),

    # Displays
    "television": ("TVs & Displays", "displays"),
    "TV": ("TVs & Displays", "displays"),
    "digital_clock": ("TVs & Displays", "displays"),

    # Audio & Wearables
    "headphone": ("Audio & Wearables", "audio"),
    "earphone": ("Audio & Wearables", "audio"),
    "speaker": ("Audio & Wearables", "audio"),
    "loudspeaker": ("Audio & Wearables", "audio"),
    "digital_watch": ("Audio & Wearables", "audio"),

    # Gaming
    "joystick": ("Gaming Consoles", "gaming"),
    "remote_control": ("Gaming Consoles", "gaming"),

    # Printers
    "printer": ("Printers & Scanners", "printers"),

    # Networking
    "modem": ("Networking Equipment", "networking"),
    "router": ("Networking Equipment", "networking"),

    # Kitchen
    "microwave": ("Kitchen Appliances", "kitchen"),
    "toaster": ("Kitchen Appliances", "kitchen"),
    "coffee_maker": ("Kitchen Appliances", "kitchen"),
    "electric_fan": ("Kitchen Appliances", "kitchen"),
    "iron": ("Kitchen Appliances", "kitchen"),
    "vacuum": ("Kitchen Appliances", "kitchen"),
    "washer": ("Kitchen Appliances", "kitchen"),
    "refrigerator": ("Kitchen Appliances", "kitchen"),

    # Cables
    "power_cord": ("Cables & Chargers", "cables"),
    "plug": ("Cables & Chargers", "cables"),
    "adapter": ("Cables & Chargers", "cables"),

    # Batteries
    "battery": ("Batteries", "batteries"),
}

_KEYS = [(key.lower(), value) for key, value in EWASTE_LABEL_MAP.items()]

PredictionLike = Union[Prediction, Tuple[str, float]]


class ImageClassifier(Protocol):
    def classify(self, image) -> Sequence[PredictionLike]:
        ...


def normalize_label(label: str) -> List[str]:
    return label.lower().replace(",", " ").replace("_", " ").split()


def _as_prediction(p: PredictionLike) -> Prediction:
    if isinstance(p, Prediction):
        return p
    label, probability = p
    return Prediction(label=label, probability=probability)


def _match_word(word: str) -> Optional[Tuple[str, str]]:
    for key, value in _KEYS:
        if key in word or word in key:
            return value
    return None


def classify(predictions: Iterable[PredictionLike], threshold: float = DEFAULT_THRESHOLD) -> ScanDecision:
    """
    Decide whether the ranked predictions show a piece of e-waste.

    The probability gate is applied only when a keyword hits, so a weak early
    hit is skipped and a later prediction can still be accepted. Never raises
    for a missing match; that is a negative decision.
    """
    preds = [_as_prediction(p) for p in predictions]

    for pred in preds:
        for word in normalize_label(pred.label):
            hit = _match_word(word)
            if hit is None:
                continue
            if pred.probability > threshold:
                category, slug = hit
                logger.debug(f"Matched '{pred.label}' ({pred.probability:.2f}) to {slug}")
                return ScanDecision(
                    label=pred.label,
                    confidence=pred.probability,
                    is_ewaste=True,
                    category=category,
                    category_slug=slug,
                    predictions=preds,
                )

    top = preds[0] if preds else None
    return ScanDecision(
        label=top.label if top else "Unknown",
        confidence=top.probability if top else 0,
        is_ewaste=False,
        predictions=preds,
    )


def scan(classifier: ImageClassifier, image, threshold: float = DEFAULT_THRESHOLD) -> ScanDecision:
    """Run the external classifier on an image and match its output."""
    try:
        predictions = list(classifier.classify(image))
    except Exception as e:
        logger.error(f"Classifier failed: {e}")
        raise CapabilityError("Scanning failed. Please try again.") from e
    return classify(predictions, threshold)
