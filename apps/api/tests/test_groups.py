import pytest

from models.group import GroupJoinRequest, GroupMembership, RestaurantGroup
from models.notification import Notification
from models.restaurant import Restaurant


async def _create_group(client, headers, name="Left Bank Bistros"):
    resp = await client.post("/api/restaurant/groups", json={"name": name}, headers=headers)
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_owner_creates_one_group_only(integration_client, seed, headers_for):
    restaurant = await seed.restaurant(name="Owner Bistro")
    headers = headers_for(await seed.owner_of(restaurant))

    data = await _create_group(integration_client, headers)
    assert data["owner"] == {"restaurant_id": restaurant.id, "name": "Owner Bistro"}
    assert data["members"] == []
    assert (await seed.get(Restaurant, id=restaurant.id)).is_group_member is True

    again = await integration_client.post("/api/restaurant/groups", json={"name": "Second"}, headers=headers)
    assert again.status_code == 409
    assert again.json()["message"] == "Restaurant already owns a group"

    mine = await integration_client.get("/api/restaurant/groups/mine", headers=headers)
    assert mine.json()["data"]["id"] == data["id"]


@pytest.mark.asyncio
async def test_invite_and_accept_adds_member(integration_client, seed, headers_for):
    owner_restaurant = await seed.restaurant()
    guest = await seed.restaurant(name="Guest Cafe")
    owner_headers = headers_for(await seed.owner_of(owner_restaurant))
    guest_owner = await seed.owner_of(guest)
    guest_headers = headers_for(guest_owner)

    group = await _create_group(integration_client, owner_headers)
    invite = await integration_client.post(
        f"/api/restaurant/groups/{group['id']}/invite",
        json={"toRestaurantId": guest.id},
        headers=owner_headers,
    )
    assert invite.status_code == 201
    request_id = invite.json()["data"]["id"]
    assert invite.json()["data"]["status"] == "PENDING"

    duplicate = await integration_client.post(
        f"/api/restaurant/groups/{group['id']}/invite",
        json={"toRestaurantId": guest.id},
        headers=owner_headers,
    )
    assert duplicate.status_code == 409

    inbox = await integration_client.get("/api/restaurant/groups/requests", headers=guest_headers)
    assert [item["id"] for item in inbox.json()["data"]["incoming"]] == [request_id]
    assert [note.type for note in await seed.all(Notification, user_id=guest_owner.id)] == ["GROUP"]

    accepted = await integration_client.post(
        f"/api/restaurant/groups/requests/{request_id}/respond",
        json={"accept": True},
        headers=guest_headers,
    )
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "ACCEPTED"

    membership = await seed.get(GroupMembership, restaurant_id=guest.id)
    assert membership.group_id == group["id"]
    assert (await seed.get(Restaurant, id=guest.id)).is_group_member is True

    members = await integration_client.get(f"/api/restaurant/groups/{group['id']}/members", headers=guest_headers)
    assert [item["restaurant_id"] for item in members.json()["data"]] == [guest.id]

    handled = await integration_client.post(
        f"/api/restaurant/groups/requests/{request_id}/respond",
        json={"accept": False},
        headers=guest_headers,
    )
    assert handled.status_code == 400


@pytest.mark.asyncio
async def test_rejected_invitation_leaves_restaurant_free(integration_client, seed, headers_for):
    owner_restaurant = await seed.restaurant()
    guest = await seed.restaurant()
    owner_headers = headers_for(await seed.owner_of(owner_restaurant))
    guest_headers = headers_for(await seed.owner_of(guest))

    group = await _create_group(integration_client, owner_headers)
    invite = await integration_client.post(
        f"/api/restaurant/groups/{group['id']}/invite",
        json={"toRestaurantId": guest.id},
        headers=owner_headers,
    )
    request_id = invite.json()["data"]["id"]

    # Only the invited restaurant may answer.
    foreign = await integration_client.post(
        f"/api/restaurant/groups/requests/{request_id}/respond",
        json={"accept": True},
        headers=owner_headers,
    )
    assert foreign.status_code == 404

    rejected = await integration_client.post(
        f"/api/restaurant/groups/requests/{request_id}/respond",
        json={"accept": False},
        headers=guest_headers,
    )
    assert rejected.json()["data"]["status"] == "REJECTED"
    assert await seed.get(GroupMembership, restaurant_id=guest.id) is None
    assert (await seed.get(GroupJoinRequest, id=request_id)).responded_at is not None


@pytest.mark.asyncio
async def test_cannot_invite_affiliated_or_self(integration_client, seed, headers_for):
    owner_restaurant = await seed.restaurant()
    other_owner = await seed.restaurant()
    taken = await seed.restaurant()
    await seed.group(other_owner, members=[taken])
    headers = headers_for(await seed.owner_of(owner_restaurant))

    group = await _create_group(integration_client, headers)
    url = f"/api/restaurant/groups/{group['id']}/invite"

    member_of_other = await integration_client.post(url, json={"toRestaurantId": taken.id}, headers=headers)
    assert member_of_other.status_code == 409
    assert member_of_other.json()["message"] == "Restaurant already belongs to a group"

    owner_of_other = await integration_client.post(url, json={"toRestaurantId": other_owner.id}, headers=headers)
    assert owner_of_other.status_code == 409

    self_invite = await integration_client.post(url, json={"toRestaurantId": owner_restaurant.id}, headers=headers)
    assert self_invite.status_code == 400

    missing = await integration_client.post(url, json={"toRestaurantId": "missing"}, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_only_owner_manages_group(integration_client, seed, headers_for):
    owner_restaurant = await seed.restaurant()
    member = await seed.restaurant()
    group = await seed.group(owner_restaurant, members=[member])
    member_headers = headers_for(await seed.owner_of(member))
    owner_headers = headers_for(await seed.owner_of(owner_restaurant))

    denied = await integration_client.put(
        f"/api/restaurant/groups/{group.id}",
        json={"name": "Hijacked"},
        headers=member_headers,
    )
    assert denied.status_code == 403

    renamed = await integration_client.put(
        f"/api/restaurant/groups/{group.id}",
        json={"name": "Renamed", "description": "Shared loyalty"},
        headers=owner_headers,
    )
    assert renamed.status_code == 200
    assert renamed.json()["data"]["name"] == "Renamed"
    assert (await seed.get(RestaurantGroup, id=group.id)).description == "Shared loyalty"


@pytest.mark.asyncio
async def test_remove_member_resets_flag(integration_client, seed, headers_for):
    owner_restaurant = await seed.restaurant()
    member = await seed.restaurant()
    group = await seed.group(owner_restaurant, members=[member])
    headers = headers_for(await seed.owner_of(owner_restaurant))

    resp = await integration_client.delete(f"/api/restaurant/groups/{group.id}/members/{member.id}", headers=headers)
    assert resp.status_code == 200
    assert await seed.get(GroupMembership, restaurant_id=member.id) is None
    assert (await seed.get(Restaurant, id=member.id)).is_group_member is False

    again = await integration_client.delete(f"/api/restaurant/groups/{group.id}/members/{member.id}", headers=headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_customers_cannot_use_group_routes(integration_client, seed, headers_for):
    customer = await seed.user()
    resp = await integration_client.post(
        "/api/restaurant/groups",
        json={"name": "Nope"},
        headers=headers_for(customer),
    )
    assert resp.status_code == 403
