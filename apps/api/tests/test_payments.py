import pytest

from models.balance import UserRestaurantBalance
from models.notification import Notification
from models.purchase import Purchase


async def _balances(seed, user):
    rows = await seed.all(UserRestaurantBalance, user_id=user.id)
    return {row.restaurant_id: row for row in rows}


@pytest.mark.asyncio
async def test_single_restaurant_payment_debits_selected_counter(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()
    await seed.balance(user, restaurant, balance="30.00", stars_meal=40, stars_drink=5)

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "stars_meal", "amount": 25},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["success"] is True
    assert payload["data"]["is_group"] is False
    assert payload["data"]["remaining"] == 15

    row = (await _balances(seed, user))[restaurant.id]
    assert row.stars_meal == 15
    assert row.stars_drink == 5
    assert float(row.balance) == 30.0

    purchase = await seed.get(Purchase, user_id=user.id)
    assert purchase.restaurant_id == restaurant.id
    assert purchase.payment_type == "stars_meal"

    owner_notes = await seed.all(Notification, user_id=restaurant.user_id)
    assert [note.title for note in owner_notes] == ["New Payment Received"]


@pytest.mark.asyncio
async def test_payment_over_balance_fails_and_leaves_row_unchanged(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()
    await seed.balance(user, restaurant, balance="30.00")

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "balance", "amount": 50},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Insufficient balance"
    assert resp.json()["error_code"] == "INSUFFICIENT_FUNDS"

    row = (await _balances(seed, user))[restaurant.id]
    assert float(row.balance) == 30.0
    assert await seed.all(Purchase, user_id=user.id) == []


@pytest.mark.asyncio
async def test_payment_reports_missing_star_category(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()
    await seed.balance(user, restaurant, stars_drink=3)

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "stars_drink", "amount": 4},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Insufficient drink stars"


@pytest.mark.asyncio
async def test_payment_without_balance_row_is_rejected(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "balance", "amount": 1},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "No balance found for this restaurant"


@pytest.mark.asyncio
async def test_payment_to_unknown_target_is_not_found(integration_client, seed, headers_for):
    user = await seed.user()

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": "missing", "currencyType": "balance", "amount": 1},
        headers=headers_for(user),
    )
    assert resp.status_code == 404
    assert resp.json()["message"] == "Group not found"


@pytest.mark.asyncio
async def test_fractional_star_payment_is_rejected(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()
    await seed.balance(user, restaurant, stars_meal=10)

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "stars_meal", "amount": 1.5},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Stars amount must be a whole number"
    assert (await _balances(seed, user))[restaurant.id].stars_meal == 10


@pytest.mark.asyncio
async def test_non_positive_amount_fails_validation(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "balance", "amount": 0},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_group_payment_drains_rows_in_restaurant_id_order(integration_client, seed, headers_for):
    user = await seed.user()
    owner = await seed.restaurant(restaurant_id="r0-owner", name="Owner Bistro")
    r1 = await seed.restaurant(restaurant_id="r1-member", name="Member One")
    r2 = await seed.restaurant(restaurant_id="r2-member", name="Member Two")
    group = await seed.group(owner, members=[r2, r1])
    await seed.balance(user, r1, balance="10.00")
    await seed.balance(user, r2, balance="15.00")

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": group.id, "currencyType": "balance", "amount": 20},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["is_group"] is True
    assert data["remaining"] == 5
    assert data["deductions"] == [
        {"restaurant_id": "r1-member", "amount": 10.0},
        {"restaurant_id": "r2-member", "amount": 10.0},
    ]

    rows = await _balances(seed, user)
    assert float(rows[r1.id].balance) == 0.0
    assert float(rows[r2.id].balance) == 5.0
    assert all(row.balance >= 0 for row in rows.values())

    purchase = await seed.get(Purchase, user_id=user.id)
    assert purchase.group_id == group.id
    assert purchase.restaurant_id is None


@pytest.mark.asyncio
async def test_group_payment_includes_owner_restaurant_in_pool(integration_client, seed, headers_for):
    user = await seed.user()
    owner = await seed.restaurant(restaurant_id="a-owner")
    member = await seed.restaurant(restaurant_id="b-member")
    group = await seed.group(owner, members=[member])
    await seed.balance(user, owner, stars_drink=4)
    await seed.balance(user, member, stars_drink=6)

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": group.id, "currencyType": "stars_drink", "amount": 7},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    rows = await _balances(seed, user)
    assert rows[owner.id].stars_drink == 0
    assert rows[member.id].stars_drink == 3
    assert sum(row.stars_drink for row in rows.values()) == 3


@pytest.mark.asyncio
async def test_group_payment_short_pool_changes_nothing(integration_client, seed, headers_for):
    user = await seed.user()
    owner = await seed.restaurant()
    r1 = await seed.restaurant()
    r2 = await seed.restaurant()
    group = await seed.group(owner, members=[r1, r2])
    await seed.balance(user, r1, balance="10.00")
    await seed.balance(user, r2, balance="15.00")

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": group.id, "currencyType": "balance", "amount": 26},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Insufficient group balance"

    rows = await _balances(seed, user)
    assert float(rows[r1.id].balance) == 10.0
    assert float(rows[r2.id].balance) == 15.0
    assert await seed.all(Purchase, user_id=user.id) == []


@pytest.mark.asyncio
async def test_group_payment_without_any_rows_is_rejected(integration_client, seed, headers_for):
    user = await seed.user()
    owner = await seed.restaurant()
    group = await seed.group(owner, members=[await seed.restaurant()])

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": group.id, "currencyType": "balance", "amount": 1},
        headers=headers_for(user),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "No balances found for this group"


@pytest.mark.asyncio
async def test_balances_are_aggregated_per_group_and_restaurant(integration_client, seed, headers_for):
    user = await seed.user()
    owner = await seed.restaurant(name="Alpha")
    member = await seed.restaurant(name="Beta")
    standalone = await seed.restaurant(name="Gamma")
    empty = await seed.restaurant(name="Delta")
    group = await seed.group(owner, members=[member], name="Alpha Group")
    await seed.balance(user, owner, balance="5.00", stars_meal=10)
    await seed.balance(user, member, balance="7.50", stars_drink=20)
    await seed.balance(user, standalone, stars_meal=30)
    await seed.balance(user, empty)

    resp = await integration_client.get("/api/client/balance/with-restaurants", headers=headers_for(user))
    assert resp.status_code == 200
    entries = {item["target_id"]: item for item in resp.json()["data"]}
    assert set(entries) == {group.id, standalone.id}

    grouped = entries[group.id]
    assert grouped["is_group"] is True
    assert grouped["name"] == "Alpha Group"
    assert grouped["balance"] == 12.5
    assert grouped["stars_meal"] == 10
    assert grouped["stars_drink"] == 20

    single = entries[standalone.id]
    assert single["is_group"] is False
    assert single["name"] == "Gamma"
    assert single["stars_meal"] == 30


@pytest.mark.asyncio
async def test_history_lists_purchases(integration_client, seed, headers_for):
    user = await seed.user()
    restaurant = await seed.restaurant()
    await seed.balance(user, restaurant, balance="10.00")

    await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "balance", "amount": 2.5},
        headers=headers_for(user),
    )
    resp = await integration_client.get("/api/client/balance/history", headers=headers_for(user))
    assert resp.status_code == 200
    history = resp.json()["data"]
    assert len(history["purchases"]) == 1
    assert history["purchases"][0]["amount"] == 2.5
    assert history["gifts_sent"] == []
