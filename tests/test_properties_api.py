import json
from datetime import datetime, timezone

from propertyhub.models.models import AuditLog, Job, Property, PropertyImage, UnitTenant

A = "https://cdn.example.com/a.jpg"
B = "https://cdn.example.com/b.jpg"
C = "https://cdn.example.com/c.jpg"
D = "https://cdn.example.com/d.jpg"


def _payload(**overrides):
    payload = {
        "name": "Harbor View",
        "address": "1 Harbor Way",
        "city": "Portland",
        "country": "USA",
        "propertyType": "RESIDENTIAL",
    }
    payload.update(overrides)
    return payload


def _image_urls(property_payload):
    return [image["imageUrl"] for image in property_payload["images"]]


def test_create_with_three_images_sets_first_as_cover(client, login, create_user, db_session):
    manager = login(create_user())

    response = client.post(
        "/properties",
        json=_payload(images=[A, {"imageUrl": B, "caption": "Back yard"}, {"url": C}], monthlyHOA="125.50"),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    created = body["property"]
    assert created["imageUrl"] == A
    assert created["coverImage"] == A
    assert created["monthlyHOA"] == 125.5
    assert created["managerId"] == manager.id
    assert _image_urls(created) == [A, B, C]
    assert [image["isPrimary"] for image in created["images"]] == [True, False, False]
    assert created["images"][1]["caption"] == "Back yard"
    assert db_session.query(PropertyImage).filter(PropertyImage.property_id == created["id"]).count() == 3
    assert db_session.query(AuditLog).filter(AuditLog.action == "property.create").count() == 1


def test_create_prefers_explicit_image_url_over_list_order(client, login, create_user):
    login(create_user())

    response = client.post("/properties", json=_payload(imageUrl=C, images=[A, B, C]))

    assert response.status_code == 201
    created = response.json()["property"]
    assert created["imageUrl"] == C
    assert [image["imageUrl"] for image in created["images"] if image["isPrimary"]] == [C]


def test_create_drops_invalid_list_entries_but_keeps_request(client, login, create_user):
    login(create_user())

    response = client.post("/properties", json=_payload(images=["javascript:alert(1)", "", B]))

    assert response.status_code == 201
    assert _image_urls(response.json()["property"]) == [B]


def test_create_accepts_legacy_aliases(client, login, create_user):
    login(create_user())
    payload = _payload(postcode="97201", type="condo", coverImage=B)
    del payload["propertyType"]

    response = client.post("/properties", json=payload)

    assert response.status_code == 201
    created = response.json()["property"]
    assert created["zipCode"] == "97201"
    assert created["postcode"] == "97201"
    assert created["propertyType"] == "condo"
    assert created["type"] == "condo"
    assert created["imageUrl"] == B
    assert _image_urls(created) == [B]


def test_invalid_scalar_image_url_is_rejected_with_envelope(client, login, create_user):
    login(create_user())

    response = client.post("/properties", json=_payload(imageUrl="javascript:alert(1)"))

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "VAL_VALIDATION_ERROR"
    assert "imageUrl" in body["details"]["fieldErrors"]


def test_missing_required_fields_are_reported(client, login, create_user):
    login(create_user())
    payload = _payload(name="  ", status="sold")
    del payload["propertyType"]

    response = client.post("/properties", json=payload)

    assert response.status_code == 400
    details = response.json()["details"]
    assert "name" in details["fieldErrors"]
    assert "status" in details["fieldErrors"]


def test_property_type_is_required_on_create(client, login, create_user):
    login(create_user())
    payload = _payload()
    del payload["propertyType"]

    response = client.post("/properties", json=payload)

    assert response.status_code == 400
    assert "Property type is required" in response.json()["details"]["formErrors"]


def test_plan_limit_blocks_create(client, login, create_user, create_property):
    manager = login(create_user(subscription_plan="BASIC"))
    for _ in range(10):
        create_property(manager)

    response = client.post("/properties", json=_payload())

    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "SUB_USAGE_LIMIT_REACHED"
    assert body["details"] == {"limit": 10, "current": 10, "plan": "BASIC"}


def test_only_managers_can_create(client, login, create_user):
    login(create_user(role="OWNER"))

    response = client.post("/properties", json=_payload())

    assert response.status_code == 403
    assert response.json()["code"] == "ACC_ROLE_REQUIRED"


def test_property_writes_require_active_subscription(client, login, create_user, create_property, db_session):
    manager = login(create_user(subscription_status="CANCELED"))
    property_obj = create_property(manager, name="Kept")

    responses = [
        client.post("/properties", json=_payload()),
        client.patch(f"/properties/{property_obj.id}", json={"name": "Renamed"}),
        client.delete(f"/properties/{property_obj.id}"),
    ]

    for response in responses:
        assert response.status_code == 403
        assert response.json()["code"] == "SUB_SUBSCRIPTION_REQUIRED"
        assert response.json()["details"] == {"subscriptionStatus": "CANCELED"}
    db_session.expire_all()
    assert db_session.query(Property).count() == 1
    assert db_session.get(Property, property_obj.id).name == "Kept"


def test_list_is_scoped_to_manager_and_listed_owner(client, login, create_user, create_property, add_owner):
    manager = create_user()
    other_manager = create_user()
    owner = create_user(role="OWNER")
    first = create_property(manager, name="First")
    create_property(manager, name="Second")
    create_property(other_manager, name="Elsewhere")
    add_owner(first, owner)

    login(manager)
    names = [item["name"] for item in client.get("/properties").json()["items"]]
    assert sorted(names) == ["First", "Second"]

    login(owner)
    body = client.get("/properties").json()
    assert [item["name"] for item in body["items"]] == ["First"]
    assert body["total"] == 1

    login(create_user(role="TENANT"))
    response = client.get("/properties")
    assert response.status_code == 403
    assert response.json()["code"] == "ACC_ACCESS_DENIED"


def test_list_pagination_search_and_status(client, login, create_user, create_property):
    manager = login(create_user())
    create_property(manager, name="Alpha Court", city="Austin")
    create_property(manager, name="Beta Plaza", status="INACTIVE")
    create_property(manager, name="Gamma Tower")
    create_property(manager, name="Archived", archived_at=datetime.now(timezone.utc))

    first_page = client.get("/properties", params={"limit": 2}).json()
    assert [item["name"] for item in first_page["items"]] == ["Gamma Tower", "Beta Plaza"]
    assert first_page["total"] == 3
    assert first_page["page"] == 1
    assert first_page["hasMore"] is True

    second_page = client.get("/properties", params={"limit": 2, "offset": 2}).json()
    assert [item["name"] for item in second_page["items"]] == ["Alpha Court"]
    assert second_page["total"] == 3
    assert second_page["page"] == 2
    assert second_page["hasMore"] is False

    assert [item["name"] for item in client.get("/properties", params={"search": "austin"}).json()["items"]] == [
        "Alpha Court"
    ]
    assert [item["name"] for item in client.get("/properties", params={"status": "inactive"}).json()["items"]] == [
        "Beta Plaza"
    ]
    assert len(client.get("/properties", params={"status": "bogus"}).json()["items"]) == 3
    assert len(client.get("/properties", params={"includeArchived": "true"}).json()["items"]) == 4
    assert client.get("/properties", params={"limit": "junk"}).status_code == 200


def test_list_items_include_counts_and_image_preview(client, login, create_user, add_unit, db_session):
    login(create_user())
    images = [f"https://cdn.example.com/{index}.jpg" for index in range(12)]
    created = client.post("/properties", json=_payload(images=images)).json()["property"]
    property_obj = db_session.get(Property, created["id"])
    add_unit(property_obj, "101")
    add_unit(property_obj, "102")

    item = client.get("/properties").json()["items"][0]

    assert item["counts"] == {"units": 2, "jobs": 0, "inspections": 0}
    assert len(item["images"]) == 10
    assert item["imageUrl"] == images[0]


def test_list_cache_is_invalidated_by_writes(client, login, create_user, create_property):
    manager = login(create_user())
    create_property(manager, name="Cached")

    assert client.get("/properties").json()["total"] == 1
    # Rows added behind the API's back are hidden by the cached response.
    create_property(manager, name="Hidden")
    assert client.get("/properties").json()["total"] == 1

    assert client.post("/properties", json=_payload(name="Fresh")).status_code == 201
    assert client.get("/properties").json()["total"] == 3


def test_detail_includes_owners_units_and_occupancy(client, login, create_user, create_property, add_owner, add_unit):
    manager = create_user(first_name="Maria", last_name="Manager")
    owner = create_user(role="OWNER", first_name="Otto", last_name="Owner")
    property_obj = create_property(manager, image_url=A)
    add_owner(property_obj, owner, 60)
    add_unit(property_obj, "B2", "OCCUPIED")
    add_unit(property_obj, "A1", "OCCUPIED")
    add_unit(property_obj, "C3", "VACANT")
    add_unit(property_obj, "D4", "MAINTENANCE")

    login(owner)
    response = client.get(f"/properties/{property_obj.id}")

    assert response.status_code == 200
    detail = response.json()["property"]
    assert detail["manager"]["firstName"] == "Maria"
    assert detail["owners"][0]["ownershipPercentage"] == 60
    assert detail["owners"][0]["owner"]["lastName"] == "Owner"
    assert [unit["unitNumber"] for unit in detail["units"]] == ["A1", "B2", "C3", "D4"]
    assert detail["unitCount"] == 4
    assert detail["occupancyStats"] == {
        "occupied": 2,
        "vacant": 1,
        "maintenance": 1,
        "total": 4,
        "occupancyRate": 50.0,
    }
    # Legacy cover without image records is exposed as a synthetic primary image.
    assert detail["images"][0]["id"] == f"{property_obj.id}:primary"
    assert detail["images"][0]["imageUrl"] == A


def test_detail_access_errors(client, login, create_user, create_property):
    property_obj = create_property(create_user())

    login(create_user())
    response = client.get(f"/properties/{property_obj.id}")
    assert response.status_code == 403
    assert response.json()["code"] == "ACC_PROPERTY_ACCESS_DENIED"

    response = client.get("/properties/999999")
    assert response.status_code == 404
    assert response.json()["code"] == "RES_PROPERTY_NOT_FOUND"


def test_patch_replaces_images_by_url(client, login, create_user):
    login(create_user())
    created = client.post(
        "/properties", json=_payload(images=[{"imageUrl": A, "caption": "Front"}, B, C])
    ).json()["property"]

    response = client.patch(f"/properties/{created['id']}", json={"images": [{"imageUrl": C}, {"imageUrl": D}]})

    assert response.status_code == 200
    updated = response.json()["property"]
    assert _image_urls(updated) == [C, D]
    assert updated["imageUrl"] == C
    assert [image["isPrimary"] for image in updated["images"]] == [True, False]
    original_c = next(image for image in created["images"] if image["imageUrl"] == C)
    assert updated["images"][0]["id"] == original_c["id"]


def test_patch_keeps_current_cover_when_still_submitted(client, login, create_user):
    login(create_user())
    created = client.post("/properties", json=_payload(images=[A, B])).json()["property"]

    updated = client.patch(f"/properties/{created['id']}", json={"images": [B, A, C]}).json()["property"]

    assert updated["imageUrl"] == A
    assert _image_urls(updated) == [B, A, C]


def test_patch_image_url_promotes_existing_or_new_record(client, login, create_user):
    login(create_user())
    created = client.post("/properties", json=_payload(images=[A, B])).json()["property"]

    promoted = client.patch(f"/properties/{created['id']}", json={"imageUrl": B}).json()["property"]
    assert promoted["imageUrl"] == B
    assert [image["imageUrl"] for image in promoted["images"] if image["isPrimary"]] == [B]

    added = client.patch(f"/properties/{created['id']}", json={"imageUrl": D}).json()["property"]
    assert added["imageUrl"] == D
    assert _image_urls(added) == [A, B, D]


def test_patch_deep_merges_amenities(client, login, create_user):
    login(create_user())
    created = client.post(
        "/properties",
        json=_payload(
            amenities={
                "utilities": {"water": True, "gas": True},
                "parking": {"available": True, "type": "garage", "spaces": 2},
                "pets": {"allowed": True},
            }
        ),
    ).json()["property"]

    response = client.patch(
        f"/properties/{created['id']}",
        json={"name": "Renamed", "amenities": {"utilities": {"gas": False}, "parking": None}},
    )

    assert response.status_code == 200
    updated = response.json()["property"]
    assert updated["name"] == "Renamed"
    assert updated["amenities"] == {"utilities": {"water": True, "gas": False}, "pets": {"allowed": True}}


def test_patch_rejects_bad_parking_type(client, login, create_user):
    login(create_user())
    created = client.post("/properties", json=_payload()).json()["property"]

    response = client.patch(f"/properties/{created['id']}", json={"amenities": {"parking": {"type": "HELIPAD"}}})

    assert response.status_code == 400


def test_patch_write_guards(client, login, create_user, create_property, add_owner):
    manager = create_user()
    owner = create_user(role="OWNER")
    property_obj = create_property(manager)
    add_owner(property_obj, owner)

    login(owner)
    response = client.patch(f"/properties/{property_obj.id}", json={"name": "Owner edit"})
    assert response.status_code == 403
    assert response.json()["code"] == "ACC_ROLE_REQUIRED"

    login(create_user())
    response = client.patch(f"/properties/{property_obj.id}", json={"name": "Stranger edit"})
    assert response.status_code == 403
    assert response.json()["code"] == "ACC_PROPERTY_ACCESS_DENIED"


def test_delete_is_blocked_by_dependents(client, login, create_user, create_property, add_unit, db_session):
    manager = login(create_user())
    tenant = create_user(role="TENANT")
    property_obj = create_property(manager)
    unit = add_unit(property_obj, "1A", "OCCUPIED")
    db_session.add(UnitTenant(unit_id=unit.id, tenant_id=tenant.id, is_active=True))
    db_session.add(Job(property_id=property_obj.id, title="Fix sink"))
    db_session.commit()

    response = client.delete(f"/properties/{property_obj.id}")

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "BIZ_OPERATION_NOT_ALLOWED"
    assert body["details"] == {"units": 1, "jobs": 1, "activeTenants": 1}
    assert "1 unit(s)" in body["message"]


def test_delete_removes_property_and_images(client, login, create_user, db_session):
    login(create_user())
    created = client.post("/properties", json=_payload(images=[A, B])).json()["property"]

    response = client.delete(f"/properties/{created['id']}")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert client.get(f"/properties/{created['id']}").status_code == 404
    assert db_session.query(PropertyImage).count() == 0


def test_activity_lists_recent_changes(client, login, create_user, create_property, add_unit, db_session):
    manager = login(create_user())
    property_obj = create_property(manager)
    add_unit(property_obj, "7")
    db_session.add(Job(property_id=property_obj.id, title="Paint hallway", status="IN_PROGRESS"))
    db_session.commit()

    response = client.get(f"/properties/{property_obj.id}/activity", params={"limit": 500})

    assert response.status_code == 200
    activities = response.json()["activities"]
    assert {item["type"] for item in activities} == {"job", "unit"}
    assert any(item["title"] == "Paint hallway" for item in activities)


def test_owner_assignment_lifecycle(client, login, create_user, create_property):
    manager = login(create_user())
    owner = create_user(role="OWNER")
    tenant = create_user(role="TENANT")
    property_obj = create_property(manager)
    url = f"/properties/{property_obj.id}/owners"

    response = client.post(url, json={"ownerId": owner.id, "ownershipPercentage": 40})
    assert response.status_code == 201
    assert response.json()["owner"]["ownershipPercentage"] == 40

    assert client.post(url, json={"ownerId": owner.id}).json()["code"] == "RES_ALREADY_EXISTS"
    assert client.post(url, json={"ownerId": tenant.id}).status_code == 400
    missing = client.post(url, json={"ownerId": 424242})
    assert missing.status_code == 404
    assert missing.json()["code"] == "RES_USER_NOT_FOUND"

    login(owner)
    assert client.get(f"/properties/{property_obj.id}").status_code == 200

    login(manager)
    assert client.delete(f"{url}/{owner.id}").status_code == 200
    assert client.delete(f"{url}/{owner.id}").status_code == 404


def test_routes_work_without_image_table(client, login, create_user, drop_image_table):
    login(create_user())
    drop_image_table()

    response = client.post("/properties", json=_payload(images=[A, B]))
    assert response.status_code == 201
    created = response.json()["property"]
    assert created["imageUrl"] == A
    assert created["images"] == [
        {
            "id": f"{created['id']}:primary",
            "propertyId": created["id"],
            "imageUrl": A,
            "caption": None,
            "category": "OTHER",
            "isPrimary": True,
            "displayOrder": 0,
            "uploadedById": created["managerId"],
            "createdAt": created["createdAt"],
            "updatedAt": created["updatedAt"],
        }
    ]

    assert client.get("/properties").json()["items"][0]["imageUrl"] == A

    updated = client.patch(f"/properties/{created['id']}", json={"images": [B]}).json()["property"]
    assert updated["imageUrl"] == B

    unavailable = client.get(f"/properties/{created['id']}/images")
    assert unavailable.status_code == 503
    assert unavailable.json()["code"] == "EXT_SERVICE_UNAVAILABLE"

    assert client.get("/health").json() == {"status": "ok", "features": {"propertyImages": False}}
    assert client.delete(f"/properties/{created['id']}").status_code == 200


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/no-such-route")
    assert response.status_code == 404
    assert response.json()["code"] == "RES_NOT_FOUND"


def test_update_audit_records_only_changed_fields(client, login, create_user, create_property, db_session):
    manager = login(create_user())
    property_obj = create_property(manager, name="Before", city="Salem")

    client.patch(f"/properties/{property_obj.id}", json={"name": "After", "city": "Salem"})

    entry = db_session.query(AuditLog).filter(AuditLog.action == "property.update").one()
    assert json.loads(entry.before) == {"name": "Before"}
    assert json.loads(entry.after) == {"name": "After"}
