from dermaai.agents.labels import NESTED_PLACEHOLDER, display_text, resolve_diseases
from dermaai.models import DiagnosisResponse, DiseaseScore, decode_labels


def _pairs(scores):
    return [(s.name, s.score) for s in scores]


def test_decode_tuples_already_sorted():
    out = decode_labels([["Eczema", 0.8], ["Psoriasis", 0.2]])
    assert _pairs(out) == [("Eczema", 0.8), ("Psoriasis", 0.2)]


def test_decode_tuples_resorted_descending():
    out = decode_labels([["Psoriasis", 0.2], ["Eczema", 0.8]])
    assert _pairs(out) == [("Eczema", 0.8), ("Psoriasis", 0.2)]


def test_decode_objects():
    out = decode_labels([{"name": "Vảy nến", "score": 0.1}, {"name": "Viêm da cơ địa", "score": 0.7}])
    assert _pairs(out) == [("Viêm da cơ địa", 0.7), ("Vảy nến", 0.1)]


def test_decode_object_with_probability_key():
    out = decode_labels([{"name": "Mụn trứng cá", "probability": 0.42}])
    assert _pairs(out) == [("Mụn trứng cá", 0.42)]


def test_decode_mixed_shapes():
    out = decode_labels([["A", 0.3], {"name": "B", "score": 0.9}])
    assert _pairs(out) == [("B", 0.9), ("A", 0.3)]


def test_decode_drops_malformed_entries():
    out = decode_labels([["A", 0.5], ["only-name"], 42, {"score": 0.1}, ["B", "high"]])
    assert _pairs(out) == [("A", 0.5)]


def test_decode_non_list_is_empty():
    assert decode_labels(None) == []
    assert decode_labels({"name": "A", "score": 1.0}) == []


def test_response_labels_decoded_at_boundary():
    resp = DiagnosisResponse.model_validate(
        {"labels": [["Psoriasis", 0.2], ["Eczema", 0.8]], "response": "ok", "chat_history": [1, 2]}
    )
    assert all(isinstance(s, DiseaseScore) for s in resp.labels)
    assert resp.labels[0].name == "Eczema"


def test_display_text():
    assert display_text("Có thể là viêm da") == "Có thể là viêm da"
    assert display_text(3) == "3"
    assert display_text(None) == ""
    assert display_text({"role": "model"}) == NESTED_PLACEHOLDER
    assert display_text([["user", "hi"]]) == NESTED_PLACEHOLDER


def test_resolve_diseases_links_known_labels(cache):
    cache.update_cache([{"id": "d-eczema", "label": "Eczema"}])
    labels = decode_labels([["Psoriasis", 0.2], ["Eczema", 0.8]])

    resolved = resolve_diseases(labels, cache)

    top, other = resolved
    assert top.name == "Eczema"
    assert top.most_likely is True
    assert top.disease_id == "d-eczema"
    assert top.href == "/diseases/d-eczema"
    assert top.percentage == 80

    assert other.most_likely is False
    assert other.disease_id is None
    assert other.href is None
    assert other.label == "Psoriasis"


def test_resolve_diseases_empty(cache):
    assert resolve_diseases([], cache) == []
