import logging

from propertyhub.services.properties import apply_legacy_aliases, prepare_submitted_images
from propertyhub.services.property_images import (
    OrderedImage,
    apply_preferred_primary,
    coerce_bool,
    determine_new_image_primary_flag,
    normalise_submitted_images,
    parse_image_input,
    primary_url_of,
)

A = "https://cdn.example.com/a.jpg"
B = "https://cdn.example.com/b.jpg"
C = "/api/uploads/properties/c.png"


def test_coerce_bool_accepts_boolean_like_strings():
    assert coerce_bool(True) is True
    assert coerce_bool(" Yes ") is True
    assert coerce_bool("on") is True
    assert coerce_bool("0") is False
    assert coerce_bool("off") is False
    assert coerce_bool("maybe") is None
    assert coerce_bool(1) is None


def test_parse_image_input_handles_strings_and_mappings():
    image, reason = parse_image_input(f"  {A}  ")
    assert reason is None
    assert image.image_url == A
    assert image.caption_provided is False

    image, _ = parse_image_input({"url": B, "caption": "  Front  ", "isPrimary": "true"})
    assert image.image_url == B
    assert image.caption == "Front"
    assert image.caption_provided is True
    assert image.is_primary is True


def test_alt_text_takes_precedence_over_caption():
    image, _ = parse_image_input({"imageUrl": A, "caption": "caption", "altText": "alt"})
    assert image.caption == "alt"


def test_blank_caption_is_an_explicit_clear():
    image, _ = parse_image_input({"imageUrl": A, "caption": "   "})
    assert image.caption is None
    assert image.caption_provided is True

    image, _ = parse_image_input({"imageUrl": A, "caption": None, "captionProvided": True})
    assert image.caption is None
    assert image.caption_provided is True


def test_parse_image_input_reports_rejection_reasons():
    assert parse_image_input("")[1] == "empty string"
    assert parse_image_input("javascript:alert(1)")[1] == "invalid URL format"
    assert parse_image_input({"caption": "no url"})[1] == "no imageUrl found"
    assert parse_image_input({"imageUrl": "not a url"})[1] == "failed location check"
    assert parse_image_input(12)[1] == "unsupported type int"


def test_normalise_drops_invalid_entries_and_logs_them(caplog):
    raw = [A, "", {"imageUrl": "javascript:alert(1)"}, {"imageUrl": B}, None]

    with caplog.at_level(logging.WARNING, logger="propertyhub.services.property_images"):
        images = normalise_submitted_images(raw)

    assert [image.image_url for image in images] == [A, B]
    assert [image.is_primary for image in images] == [True, False]
    assert "Dropped 3 of 5" in caplog.text
    assert "#1 (empty string)" in caplog.text
    assert "#2 (failed location check)" in caplog.text
    assert "#4 (unsupported type NoneType)" in caplog.text


def test_normalise_keeps_first_explicit_primary_only():
    images = normalise_submitted_images(
        [{"imageUrl": A}, {"imageUrl": B, "isPrimary": True}, {"imageUrl": C, "isPrimary": "yes"}]
    )
    assert [image.is_primary for image in images] == [False, True, False]


def test_normalise_of_non_list_or_all_invalid_is_empty():
    assert normalise_submitted_images(None) == []
    assert normalise_submitted_images("https://cdn.example.com/a.jpg") == []
    assert normalise_submitted_images(["", "javascript:x"]) == []


def test_normalised_output_round_trips_unchanged():
    images = normalise_submitted_images([{"imageUrl": A, "caption": "Front"}, B])
    assert normalise_submitted_images(images) == images


def test_apply_preferred_primary_matches_exact_url_or_falls_back():
    images = normalise_submitted_images([A, B, C])

    assert primary_url_of(apply_preferred_primary(images, B)) == B
    assert primary_url_of(apply_preferred_primary(images, "https://cdn.example.com/other.jpg")) == A
    assert apply_preferred_primary([], A) == []


def test_prepare_submitted_images_preference_order():
    assert primary_url_of(prepare_submitted_images({"images": [A, B, C], "image_url": C})) == C
    assert primary_url_of(prepare_submitted_images({"images": [A, B, C], "cover_image": B})) == B
    assert primary_url_of(prepare_submitted_images({"images": [A, {"imageUrl": B, "isPrimary": True}]}, current_cover_url=A)) == B
    assert primary_url_of(prepare_submitted_images({"images": [A, B]}, current_cover_url=B)) == B
    assert primary_url_of(prepare_submitted_images({"images": [A, B]})) == A
    assert prepare_submitted_images({"name": "no images"}) is None


def test_image_metadata_is_accepted_as_images():
    images = prepare_submitted_images({"image_metadata": [{"imageUrl": A, "caption": "Front"}]})
    assert images == [OrderedImage(image_url=A, caption="Front", caption_provided=True, is_primary=True)]


def test_legacy_aliases_fill_current_fields():
    data = apply_legacy_aliases({"postcode": "12345", "type": "CONDO", "cover_image": B})
    assert data["zip_code"] == "12345"
    assert data["property_type"] == "CONDO"
    assert data["image_url"] == B

    data = apply_legacy_aliases({"zip_code": "999", "postcode": "12345", "images": ["", A]})
    assert data["zip_code"] == "999"
    assert data["image_url"] == A


def test_new_image_primary_policy():
    assert determine_new_image_primary_flag(True, True, True) is True
    assert determine_new_image_primary_flag(None, False, False) is True
    assert determine_new_image_primary_flag(False, False, False) is True
    assert determine_new_image_primary_flag(None, True, False) is True
    assert determine_new_image_primary_flag(None, True, True) is False
    assert determine_new_image_primary_flag(False, True, True) is False
