"""Connection API tests — the explicit (old, new) status pair."""

import pytest


async def _create(client, auth, admin, therapist, client_user, client_type="guardian"):
    r = await client.post(
        "/api/v1/connections",
        json={
            "therapist_id": therapist.id,
            "client_id": client_user.id,
            "client_type": client_type,
        },
        headers=auth(admin),
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_creating_connection_announces_activation(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")

    body = await _create(client, auth, admin, therapist, guardian)
    assert body["connection"]["status"] == "active"
    assert body["broadcast_success"] is True

    channels, payload = transport.last("connection.status-changed")
    assert channels == [f"user.{therapist.id}", f"user.{guardian.id}"]
    assert payload["old_status"] is None
    assert payload["new_status"] == "active"
    assert payload["changed_by"] == {"id": admin.id, "name": "Ada"}
    assert payload["connection"]["therapist"] == {"id": therapist.id, "name": "Dr Okafor"}


@pytest.mark.asyncio
async def test_only_admins_create_connections(client, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    r = await client.post(
        "/api/v1/connections",
        json={"therapist_id": therapist.id, "client_id": guardian.id, "client_type": "guardian"},
        headers=auth(therapist),
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_duplicate_active_connection_conflicts(client, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    await _create(client, auth, admin, therapist, guardian)
    r = await client.post(
        "/api/v1/connections",
        json={"therapist_id": therapist.id, "client_id": guardian.id, "client_type": "guardian"},
        headers=auth(admin),
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_client_type_must_match_role(client, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    r = await client.post(
        "/api/v1/connections",
        json={"therapist_id": therapist.id, "client_id": guardian.id, "client_type": "child"},
        headers=auth(admin),
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_status_change_carries_old_and_new(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]

    r = await client.patch(
        f"/api/v1/connections/{conn['id']}",
        json={"status": "suspended"},
        headers=auth(admin),
    )
    assert r.status_code == 200
    assert r.json()["connection"]["status"] == "suspended"

    _, payload = transport.last("connection.status-changed")
    assert (payload["old_status"], payload["new_status"]) == ("active", "suspended")


@pytest.mark.asyncio
async def test_unchanged_status_broadcasts_nothing(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]

    r = await client.patch(
        f"/api/v1/connections/{conn['id']}",
        json={"status": "active"},
        headers=auth(admin),
    )
    assert r.status_code == 200
    assert r.json()["broadcast_success"] is None
    assert len(transport.named("connection.status-changed")) == 1


@pytest.mark.asyncio
async def test_party_can_terminate_and_termination_is_final(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]

    r = await client.post(
        f"/api/v1/connections/{conn['id']}/terminate", headers=auth(guardian)
    )
    assert r.status_code == 200
    assert r.json()["connection"]["terminated_at"] is not None
    _, payload = transport.last("connection.status-changed")
    assert payload["new_status"] == "terminated"
    assert payload["changed_by"] == {"id": guardian.id, "name": "Rita"}

    r = await client.patch(
        f"/api/v1/connections/{conn['id']}",
        json={"status": "active"},
        headers=auth(admin),
    )
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_stranger_cannot_terminate(client, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    stranger = await make_user("Lee", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]

    r = await client.post(
        f"/api/v1/connections/{conn['id']}/terminate", headers=auth(stranger)
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_list_my_connections(client, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    await _create(client, auth, admin, therapist, guardian)

    r = await client.get("/api/v1/connections", headers=auth(therapist))
    assert [c["client"]["name"] for c in r.json()] == ["Rita"]


def _inbox(transport) -> dict[str, dict]:
    """notification.created payloads keyed by the single channel they went to."""
    return {
        channels[0]: payload["notification"]
        for channels, payload in transport.named("notification.created")
    }


@pytest.mark.asyncio
async def test_creating_connection_notifies_both_parties(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]

    inbox = _inbox(transport)
    assert set(inbox) == {f"user.{therapist.id}", f"user.{guardian.id}"}

    to_therapist = inbox[f"user.{therapist.id}"]
    assert to_therapist["type"] == "connection_assigned"
    assert to_therapist["priority"] == "high"
    assert to_therapist["message"] == "You have been assigned a new guardian: Rita"
    assert to_therapist["action_url"] == f"/therapist/connections/{conn['id']}"
    assert to_therapist["data"]["assigned_by"] == "Ada"

    to_guardian = inbox[f"user.{guardian.id}"]
    assert to_guardian["title"] == "Therapist Assignment"
    assert to_guardian["data"]["therapist_id"] == therapist.id

    r = await client.get("/api/v1/notifications", headers=auth(guardian))
    assert [n["type"] for n in r.json()] == ["connection_assigned"]


@pytest.mark.asyncio
async def test_termination_notifies_everyone_but_the_terminator(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    child = await make_user("Sam", "child", guardian=guardian)
    conn = (await _create(client, auth, admin, therapist, child, "child"))["connection"]
    transport.published.clear()

    r = await client.post(
        f"/api/v1/connections/{conn['id']}/terminate", headers=auth(therapist)
    )
    assert r.status_code == 200

    inbox = _inbox(transport)
    assert set(inbox) == {f"user.{child.id}", f"user.{guardian.id}"}
    assert inbox[f"user.{child.id}"]["type"] == "connection_terminated"
    assert inbox[f"user.{child.id}"]["data"]["terminated_by"] == "Dr Okafor"
    assert inbox[f"user.{guardian.id}"]["title"] == "Child Connection Terminated"
    assert "Sam" in inbox[f"user.{guardian.id}"]["message"]


@pytest.mark.asyncio
async def test_admin_termination_notifies_both_parties(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]
    transport.published.clear()

    r = await client.patch(
        f"/api/v1/connections/{conn['id']}",
        json={"status": "terminated"},
        headers=auth(admin),
    )
    assert r.status_code == 200
    assert set(_inbox(transport)) == {f"user.{therapist.id}", f"user.{guardian.id}"}


@pytest.mark.asyncio
async def test_suspension_sends_no_notifications(client, transport, auth, make_user):
    admin = await make_user("Ada", "admin")
    therapist = await make_user("Dr Okafor", "therapist")
    guardian = await make_user("Rita", "guardian")
    conn = (await _create(client, auth, admin, therapist, guardian))["connection"]
    transport.published.clear()

    await client.patch(
        f"/api/v1/connections/{conn['id']}",
        json={"status": "suspended"},
        headers=auth(admin),
    )
    assert transport.named("notification.created") == []
