"""Group API tests — creation, membership changes and their broadcasts."""

import pytest


async def _group(client, auth, owner, name="Tuesday Circle"):
    r = await client.post("/api/v1/groups", json={"name": name}, headers=auth(owner))
    assert r.status_code == 201
    return r.json()


@pytest.mark.asyncio
async def test_create_group_seats_creator_as_admin(client, transport, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    group = await _group(client, auth, therapist)

    assert group["created_by"] == therapist.id
    assert [(m["user_id"], m["role"]) for m in group["members"]] == [(therapist.id, "admin")]
    # Creating a group is not broadcast
    assert transport.published == []


@pytest.mark.asyncio
async def test_add_member_broadcasts_to_three_audiences(client, transport, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)

    r = await client.post(
        f"/api/v1/groups/{group['id']}/members",
        json={"user_id": child.id},
        headers=auth(therapist),
    )
    assert r.status_code == 201
    body = r.json()
    assert body["broadcast_success"] is True
    assert body["member"]["user"] == {"id": child.id, "name": "Sam"}

    channels, payload = transport.last("group-member.added")
    assert channels == [f"group.{group['id']}", f"user.{child.id}", "admin-monitoring"]
    assert payload["user"] == {"id": child.id, "name": "Sam"}
    assert payload["added_by"] == {"id": therapist.id, "name": "Dr Okafor"}
    assert payload["role"] == "member"
    assert payload["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_adding_existing_member_is_a_quiet_no_op(client, transport, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)
    url = f"/api/v1/groups/{group['id']}/members"

    await client.post(url, json={"user_id": child.id}, headers=auth(therapist))
    r = await client.post(url, json={"user_id": child.id}, headers=auth(therapist))
    assert r.status_code == 201
    assert r.json()["broadcast_success"] is None
    assert len(transport.named("group-member.added")) == 1


@pytest.mark.asyncio
async def test_plain_member_cannot_add_others(client, transport, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    other = await make_user("Lee", "child")
    group = await _group(client, auth, therapist)
    url = f"/api/v1/groups/{group['id']}/members"
    await client.post(url, json={"user_id": child.id}, headers=auth(therapist))

    r = await client.post(url, json={"user_id": other.id}, headers=auth(child))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_platform_admin_can_manage_any_group(client, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    admin = await make_user("Ada", "admin")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)

    r = await client.post(
        f"/api/v1/groups/{group['id']}/members",
        json={"user_id": child.id, "role": "admin"},
        headers=auth(admin),
    )
    assert r.status_code == 201
    assert r.json()["member"]["role"] == "admin"


@pytest.mark.asyncio
async def test_remove_member_broadcasts_with_reason(client, transport, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)
    await client.post(
        f"/api/v1/groups/{group['id']}/members",
        json={"user_id": child.id},
        headers=auth(therapist),
    )

    r = await client.delete(
        f"/api/v1/groups/{group['id']}/members/{child.id}",
        params={"reason": "moved to another group"},
        headers=auth(therapist),
    )
    assert r.status_code == 200
    assert r.json() == {"removed": True, "broadcast_success": True}

    channels, payload = transport.last("group-member.removed")
    assert channels == [f"group.{group['id']}", f"user.{child.id}", "admin-monitoring"]
    assert payload["removed_by"] == {"id": therapist.id, "name": "Dr Okafor"}
    assert payload["reason"] == "moved to another group"


@pytest.mark.asyncio
async def test_member_can_leave(client, transport, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)
    await client.post(
        f"/api/v1/groups/{group['id']}/members",
        json={"user_id": child.id},
        headers=auth(therapist),
    )

    r = await client.delete(
        f"/api/v1/groups/{group['id']}/members/{child.id}", headers=auth(child)
    )
    assert r.status_code == 200
    _, payload = transport.last("group-member.removed")
    assert payload["removed_by"] == {"id": child.id, "name": "Sam"}


@pytest.mark.asyncio
async def test_removing_non_member_is_404(client, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)
    r = await client.delete(
        f"/api/v1/groups/{group['id']}/members/{child.id}", headers=auth(therapist)
    )
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_membership_feeds_websocket_channels(client, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    child = await make_user("Sam", "child")
    group = await _group(client, auth, therapist)
    await client.post(
        f"/api/v1/groups/{group['id']}/members",
        json={"user_id": child.id},
        headers=auth(therapist),
    )

    r = await client.get("/api/v1/users/me/channels", headers=auth(child))
    assert r.json() == [f"user.{child.id}", f"group.{group['id']}"]

    r = await client.get("/api/v1/groups", headers=auth(child))
    assert [g["id"] for g in r.json()] == [group["id"]]


@pytest.mark.asyncio
async def test_outsider_cannot_view_group(client, auth, make_user):
    therapist = await make_user("Dr Okafor", "therapist")
    outsider = await make_user("Rita", "guardian")
    group = await _group(client, auth, therapist)
    r = await client.get(f"/api/v1/groups/{group['id']}", headers=auth(outsider))
    assert r.status_code == 403
