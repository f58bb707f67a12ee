from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from propertyhub.models.models import Property, PropertyImage
from propertyhub.services.property_images import (
    add_property_image,
    create_initial_images,
    delete_property_image,
    load_property_images,
    normalise_submitted_images,
    promote_cover_url,
    reorder_property_images,
    replace_property_images,
    resolve_primary_image_url,
    select_primary_image,
    sync_cover_image,
    update_property_image,
)

A = "https://cdn.example.com/a.jpg"
B = "https://cdn.example.com/b.jpg"
C = "https://cdn.example.com/c.jpg"
D = "https://cdn.example.com/d.jpg"


def _image(url, is_primary=False, display_order=0, created_at=None):
    return SimpleNamespace(image_url=url, is_primary=is_primary, display_order=display_order, created_at=created_at)


def _cover(db_session, property_id):
    db_session.expire_all()
    return db_session.get(Property, property_id).image_url


def _primaries(db_session, property_id):
    return [image.image_url for image in load_property_images(db_session, property_id) if image.is_primary]


def test_selection_prefers_primary_then_order_then_age():
    now = datetime.now(timezone.utc)
    older = _image(B, display_order=1, created_at=now - timedelta(days=1))
    newer = _image(C, display_order=1, created_at=now)
    first = _image(A, display_order=0, created_at=now)
    flagged = _image(D, is_primary=True, display_order=5, created_at=now)

    assert select_primary_image([newer, older, first, flagged]) is flagged
    assert select_primary_image([newer, older, first]) is first
    assert select_primary_image([newer, older]) is older
    assert resolve_primary_image_url([_image("   "), _image(None)]) is None
    assert resolve_primary_image_url([]) is None


def test_naive_timestamps_are_treated_as_utc():
    aware = _image(A, display_order=0, created_at=datetime(2024, 1, 1, 12, tzinfo=timezone.utc))
    naive = _image(B, display_order=0, created_at=datetime(2024, 1, 1, 11))
    assert select_primary_image([aware, naive]) is naive


def test_create_initial_images_sets_cover(db_session, create_user, create_property):
    manager = create_user()
    property_obj = create_property(manager)
    property_id = property_obj.id

    cover = create_initial_images(db_session, property_id, normalise_submitted_images([A, B, C]), manager.id)
    db_session.commit()

    assert cover == A
    assert _cover(db_session, property_id) == A
    assert [image.display_order for image in load_property_images(db_session, property_id)] == [0, 1, 2]
    assert _primaries(db_session, property_id) == [A]


def test_first_added_image_becomes_primary_and_later_ones_do_not(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id

    first = add_property_image(db_session, property_id, A, manager.id)
    second = add_property_image(db_session, property_id, B, manager.id, caption="Back", category="EXTERIOR")
    db_session.commit()

    assert first.is_primary is True
    assert second.is_primary is False
    assert second.display_order == first.display_order + 1
    assert second.category == "EXTERIOR"
    assert _cover(db_session, property_id) == A


def test_adding_explicit_primary_demotes_previous(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    add_property_image(db_session, property_id, A, manager.id)
    add_property_image(db_session, property_id, B, manager.id, is_primary=True)
    db_session.commit()

    assert _primaries(db_session, property_id) == [B]
    assert _cover(db_session, property_id) == B


def test_demoting_primary_promotes_earliest_remaining(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    create_initial_images(db_session, property_id, normalise_submitted_images([A, B, C]), manager.id)
    db_session.commit()
    images = load_property_images(db_session, property_id)

    updated = update_property_image(db_session, property_id, images[0].id, {"is_primary": False})
    db_session.commit()

    assert updated.is_primary is False
    assert _primaries(db_session, property_id) == [B]
    assert _cover(db_session, property_id) == B


def test_update_of_foreign_image_returns_none(db_session, create_user, create_property):
    manager = create_user()
    first = create_property(manager).id
    second = create_property(manager).id
    image = add_property_image(db_session, first, A, manager.id)
    db_session.commit()

    assert update_property_image(db_session, second, image.id, {"caption": "nope"}) is None


def test_deleting_primary_promotes_next_and_last_delete_clears_cover(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    create_initial_images(db_session, property_id, normalise_submitted_images([A, B]), manager.id)
    db_session.commit()
    first, second = load_property_images(db_session, property_id)

    assert delete_property_image(db_session, property_id, first) == B
    db_session.commit()
    assert _primaries(db_session, property_id) == [B]

    assert delete_property_image(db_session, property_id, db_session.get(PropertyImage, second.id)) is None
    db_session.commit()
    assert _cover(db_session, property_id) is None


def test_reorder_rewrites_display_order_and_keeps_primary(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    create_initial_images(db_session, property_id, normalise_submitted_images([A, B, C]), manager.id)
    db_session.commit()
    a, b, c = load_property_images(db_session, property_id)

    ordered = reorder_property_images(db_session, property_id, [c.id, a.id, b.id])
    db_session.commit()

    assert [image.image_url for image in ordered] == [C, A, B]
    assert [image.image_url for image in load_property_images(db_session, property_id)] == [C, A, B]
    assert _cover(db_session, property_id) == A
    assert reorder_property_images(db_session, property_id, [a.id, b.id]) is None
    assert reorder_property_images(db_session, property_id, [a.id, b.id, b.id]) is None


def test_replace_images_diffs_by_url(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    create_initial_images(
        db_session,
        property_id,
        normalise_submitted_images([{"imageUrl": A, "caption": "Front"}, {"imageUrl": B, "caption": "Side"}, C]),
        manager.id,
    )
    db_session.commit()
    original_b = next(image for image in load_property_images(db_session, property_id) if image.image_url == B)

    submitted = normalise_submitted_images([{"imageUrl": D}, {"imageUrl": B, "isPrimary": True}, {"imageUrl": A, "caption": ""}, D])
    cover = replace_property_images(db_session, property_id, submitted, manager.id)
    db_session.commit()

    images = load_property_images(db_session, property_id)
    assert [image.image_url for image in images] == [D, B, A]
    assert cover == B
    assert _cover(db_session, property_id) == B
    by_url = {image.image_url: image for image in images}
    assert by_url[B].id == original_b.id
    assert by_url[B].caption == "Side"
    assert by_url[A].caption is None
    assert _primaries(db_session, property_id) == [B]


def test_sync_settles_duplicate_primary_flags(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    db_session.add_all(
        [
            PropertyImage(property_id=property_id, image_url=A, is_primary=True, display_order=1),
            PropertyImage(property_id=property_id, image_url=B, is_primary=True, display_order=0),
        ]
    )
    db_session.commit()

    assert sync_cover_image(db_session, property_id) == B
    db_session.commit()
    assert _primaries(db_session, property_id) == [B]


def test_promote_cover_url_creates_or_promotes(db_session, create_user, create_property):
    manager = create_user()
    property_id = create_property(manager).id
    create_initial_images(db_session, property_id, normalise_submitted_images([A, B]), manager.id)
    db_session.commit()

    assert promote_cover_url(db_session, property_id, B, manager.id) == B
    db_session.commit()
    assert _primaries(db_session, property_id) == [B]

    assert promote_cover_url(db_session, property_id, C, manager.id) == C
    db_session.commit()
    assert [image.image_url for image in load_property_images(db_session, property_id)] == [A, B, C]
    assert _primaries(db_session, property_id) == [C]
