import pytest

from models.balance import UserRestaurantBalance
from models.notification import Notification
from models.top_up import TopUp, TopUpPackage


@pytest.mark.asyncio
async def test_topup_credits_amount_plus_bonus(integration_client, seed, headers_for):
    customer = await seed.user()
    restaurant = await seed.restaurant()
    owner = await seed.owner_of(restaurant)
    package = await seed.package(restaurant, amount="20.00", bonus="5.00")
    await seed.balance(customer, restaurant, balance="3.00", stars_meal=7)

    resp = await integration_client.post(
        "/api/restaurant/balance/topup",
        json={"userQr": customer.qr_code, "packageId": package.id},
        headers=headers_for(owner),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total_balance_added"] == 25.0
    assert data["new_balance"] == 28.0

    row = await seed.get(UserRestaurantBalance, user_id=customer.id, restaurant_id=restaurant.id)
    assert float(row.balance) == 28.0
    assert row.stars_meal == 7

    top_up = await seed.get(TopUp, user_id=customer.id)
    assert top_up.method == "QR_SCAN"
    assert float(top_up.total_balance_added) == 25.0
    assert top_up.package_id == package.id

    notes = await seed.all(Notification, user_id=customer.id)
    assert [note.type for note in notes] == ["TOPUP"]


@pytest.mark.asyncio
async def test_topup_with_unknown_customer_qr(integration_client, seed, headers_for):
    restaurant = await seed.restaurant()
    owner = await seed.owner_of(restaurant)
    package = await seed.package(restaurant)

    resp = await integration_client.post(
        "/api/restaurant/balance/topup",
        json={"userQr": "nobody", "packageId": package.id},
        headers=headers_for(owner),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid user QR code"


@pytest.mark.asyncio
async def test_topup_with_package_of_another_restaurant(integration_client, seed, headers_for):
    customer = await seed.user()
    restaurant = await seed.restaurant()
    other = await seed.restaurant()
    owner = await seed.owner_of(restaurant)
    foreign_package = await seed.package(other)

    resp = await integration_client.post(
        "/api/restaurant/balance/topup",
        json={"userQr": customer.qr_code, "packageId": foreign_package.id},
        headers=headers_for(owner),
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid package for this restaurant"
    assert await seed.get(UserRestaurantBalance, user_id=customer.id) is None


@pytest.mark.asyncio
async def test_customers_cannot_top_up(integration_client, seed, headers_for):
    customer = await seed.user()
    restaurant = await seed.restaurant()
    package = await seed.package(restaurant)

    resp = await integration_client.post(
        "/api/restaurant/balance/topup",
        json={"userQr": customer.qr_code, "packageId": package.id},
        headers=headers_for(customer),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_package_crud_enforces_limit_and_unique_names(integration_client, seed, headers_for):
    restaurant = await seed.restaurant()
    owner = await seed.owner_of(restaurant)
    headers = headers_for(owner)

    created_ids = []
    for index in range(5):
        resp = await integration_client.post(
            "/api/restaurant/packages",
            json={"name": f"Pack {index}", "amount": 10 + index, "bonus": 1},
            headers=headers,
        )
        assert resp.status_code == 201
        created_ids.append(resp.json()["data"]["id"])

    sixth = await integration_client.post(
        "/api/restaurant/packages",
        json={"name": "Pack 5", "amount": 50},
        headers=headers,
    )
    assert sixth.status_code == 400

    await integration_client.delete(f"/api/restaurant/packages/{created_ids[4]}", headers=headers)
    duplicate = await integration_client.post(
        "/api/restaurant/packages",
        json={"name": "Pack 0", "amount": 50},
        headers=headers,
    )
    assert duplicate.status_code == 409

    rename = await integration_client.put(
        f"/api/restaurant/packages/{created_ids[1]}",
        json={"name": "Pack 0"},
        headers=headers,
    )
    assert rename.status_code == 409

    update = await integration_client.put(
        f"/api/restaurant/packages/{created_ids[1]}",
        json={"bonus": 3.5, "isPublic": False},
        headers=headers,
    )
    assert update.status_code == 200
    assert update.json()["data"]["bonus"] == 3.5
    assert update.json()["data"]["is_public"] is False

    listing = await integration_client.get("/api/restaurant/packages", headers=headers)
    assert len(listing.json()["data"]) == 4
    assert len(await seed.all(TopUpPackage, restaurant_id=restaurant.id)) == 4


@pytest.mark.asyncio
async def test_customer_sees_only_active_public_packages(integration_client, seed, headers_for):
    customer = await seed.user()
    restaurant = await seed.restaurant()
    visible = await seed.package(restaurant, name="Visible")
    await seed.package(restaurant, name="Hidden", is_public=False)
    await seed.package(restaurant, name="Retired", is_active=False)

    resp = await integration_client.get(
        f"/api/client/balance/packages/{restaurant.id}",
        headers=headers_for(customer),
    )
    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()["data"]] == [visible.id]

    missing = await integration_client.get("/api/client/balance/packages/missing", headers=headers_for(customer))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_owner_sees_recent_scans(integration_client, seed, headers_for):
    customer = await seed.user(full_name="Scanner")
    restaurant = await seed.restaurant()
    owner = await seed.owner_of(restaurant)

    scan = await integration_client.post(
        "/api/client/balance/scan-qr",
        json={"qrCode": restaurant.qr_code_meal, "latitude": restaurant.latitude, "longitude": restaurant.longitude},
        headers=headers_for(customer),
    )
    assert scan.status_code == 200

    resp = await integration_client.get("/api/restaurant/qr-scans", headers=headers_for(owner))
    assert resp.status_code == 200
    scans = resp.json()["data"]
    assert len(scans) == 1
    assert scans[0]["user_name"] == "Scanner"
    assert scans[0]["type"] == "meal"
