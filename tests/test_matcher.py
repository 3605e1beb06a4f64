import pytest

from errors import CapabilityError
from matcher import classify, normalize_label, scan
from schemas import Prediction


def test_empty_predictions_are_unknown():
    decision = classify([])
    assert decision.label == "Unknown"
    assert decision.confidence == 0
    assert decision.is_ewaste is False
    assert decision.category is None
    assert decision.category_slug is None


def test_no_keyword_returns_top_prediction():
    decision = classify([("golden retriever", 0.81), ("tennis ball", 0.12)])
    assert decision.is_ewaste is False
    assert decision.label == "golden retriever"
    assert decision.confidence == pytest.approx(0.81)
    assert decision.category is None
    assert len(decision.predictions) == 2


def test_match_keeps_label_confidence_and_evidence():
    preds = [("laptop, laptop computer", 0.72), ("notebook, notebook computer", 0.2), ("desk", 0.03)]
    decision = classify(preds)
    assert decision.is_ewaste is True
    assert decision.label == "laptop, laptop computer"
    assert decision.confidence == pytest.approx(0.72)
    assert decision.category == "Laptops & Computers"
    assert decision.category_slug == "laptops"
    assert [p.label for p in decision.predictions] == [p[0] for p in preds]


def test_weak_early_hit_is_skipped_for_later_match():
    decision = classify([("iPod", 0.08), ("remote control, remote", 0.3), ("golden retriever", 0.2)])
    assert decision.is_ewaste is True
    assert decision.label == "remote control, remote"
    assert decision.category_slug == "gaming"


def test_first_matching_prediction_wins_over_higher_probability():
    decision = classify([("joystick", 0.2), ("laptop", 0.6)])
    assert decision.label == "joystick"
    assert decision.category == "Gaming Consoles"


def test_threshold_is_strict():
    decision = classify([("printer", 0.10)])
    assert decision.is_ewaste is False
    assert decision.label == "printer"
    assert decision.confidence == pytest.approx(0.10)


def test_custom_threshold():
    assert classify([("laptop", 0.3)], threshold=0.5).is_ewaste is False
    assert classify([("laptop", 0.3)], threshold=0.2).is_ewaste is True


@pytest.mark.parametrize("label,slug", [
    ("cellular telephone, cellular phone, cellphone, cell, mobile phone", "smartphones"),
    ("printers", "printers"),
    ("microwave, microwave oven", "kitchen"),
    ("steam iron", "kitchen"),
    ("TV", "displays"),
    ("modem", "networking"),
    ("battery", "batteries"),
])
def test_keyword_containment_both_ways(label, slug):
    assert classify([(label, 0.9)]).category_slug == slug


def test_normalize_label():
    assert normalize_label("Cellular_Telephone, cell  phone") == ["cellular", "telephone", "cell", "phone"]


def test_accepts_prediction_models():
    decision = classify([Prediction(label="loudspeaker, speaker box", probability=0.55)])
    assert decision.category_slug == "audio"


class FakeClassifier:
    def __init__(self, result=None, error=None):
        self.result = result or []
        self.error = error

    def classify(self, image):
        if self.error:
            raise self.error
        return self.result


def test_scan_runs_classifier_output_through_matcher():
    decision = scan(FakeClassifier([("modem", 0.4)]), image=object())
    assert decision.is_ewaste is True
    assert decision.category == "Networking Equipment"


def test_scan_reports_classifier_failure_as_capability_error():
    with pytest.raises(CapabilityError) as exc:
        scan(FakeClassifier(error=RuntimeError("model not loaded")), image=object())
    assert exc.value.retryable is True
