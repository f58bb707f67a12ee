from propertyhub.models.models import PropertyNote


def _notes_url(property_id):
    return f"/properties/{property_id}/notes"


def test_note_lifecycle(client, login, create_user, create_property):
    manager = login(create_user(first_name="Nora", last_name="Notes"))
    property_obj = create_property(manager)

    created = client.post(_notes_url(property_obj.id), json={"content": "  Roof inspected  "})
    assert created.status_code == 201
    note = created.json()["note"]
    assert note["content"] == "Roof inspected"
    assert note["author"] == {"id": manager.id, "name": "Nora Notes", "role": "PROPERTY_MANAGER"}

    client.post(_notes_url(property_obj.id), json={"content": "Gutters cleaned"})
    listed = client.get(_notes_url(property_obj.id)).json()["notes"]
    assert [item["content"] for item in listed] == ["Gutters cleaned", "Roof inspected"]

    updated = client.patch(f"{_notes_url(property_obj.id)}/{note['id']}", json={"content": "Roof replaced"})
    assert updated.status_code == 200
    assert updated.json()["note"]["content"] == "Roof replaced"

    deleted = client.delete(f"{_notes_url(property_obj.id)}/{note['id']}")
    assert deleted.status_code == 200
    assert len(client.get(_notes_url(property_obj.id)).json()["notes"]) == 1
    missing = client.delete(f"{_notes_url(property_obj.id)}/{note['id']}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "RES_NOT_FOUND"


def test_note_content_is_validated(client, login, create_user, create_property):
    manager = login(create_user())
    property_obj = create_property(manager)

    blank = client.post(_notes_url(property_obj.id), json={"content": "   "})
    assert blank.status_code == 400
    assert blank.json()["details"]["fieldErrors"]["content"] == ["Note content is required"]

    too_long = client.post(_notes_url(property_obj.id), json={"content": "x" * 2001})
    assert too_long.status_code == 400


def test_owner_reads_notes_but_cannot_write(client, login, create_user, create_property, add_owner):
    manager = login(create_user())
    owner = create_user(role="OWNER")
    property_obj = create_property(manager)
    add_owner(property_obj, owner)
    client.post(_notes_url(property_obj.id), json={"content": "Visible to owners"})

    login(owner)
    assert [note["content"] for note in client.get(_notes_url(property_obj.id)).json()["notes"]] == [
        "Visible to owners"
    ]
    assert client.post(_notes_url(property_obj.id), json={"content": "Owner note"}).status_code == 403

    login(create_user(role="TENANT"))
    assert client.get(_notes_url(property_obj.id)).status_code == 403


def test_only_author_can_change_note(client, login, create_user, create_property, db_session):
    manager = login(create_user())
    former_manager = create_user()
    property_obj = create_property(manager)
    note = PropertyNote(property_id=property_obj.id, author_id=former_manager.id, content="Handover notes")
    db_session.add(note)
    db_session.commit()

    response = client.patch(f"{_notes_url(property_obj.id)}/{note.id}", json={"content": "Edited"})
    assert response.status_code == 403
    assert response.json()["code"] == "ACC_ACCESS_DENIED"
    assert client.delete(f"{_notes_url(property_obj.id)}/{note.id}").status_code == 403


def test_note_changes_require_active_subscription(client, login, create_user, create_property):
    manager = login(create_user(subscription_status="TRIAL"))
    property_obj = create_property(manager)
    note = client.post(_notes_url(property_obj.id), json={"content": "Trial note"}).json()["note"]

    response = client.patch(f"{_notes_url(property_obj.id)}/{note['id']}", json={"content": "Edited"})

    assert response.status_code == 403
    assert response.json()["code"] == "SUB_TRIAL_EXPIRED"
