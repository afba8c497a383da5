"""Ledger writes must stand when notification dispatch fails after the commit."""

import logging

import httpx
import pytest

import services.notifications as notifications_service
from models.balance import UserRestaurantBalance
from models.gift import Gift
from models.notification import Notification
from models.purchase import Purchase
from models.scan_log import ScanLog
from models.user import Role


@pytest.fixture
def failing_store(monkeypatch):
    """Every inbox insert violates NOT NULL on user_id."""
    real_notification = notifications_service.Notification

    def broken(**kwargs):
        kwargs["user_id"] = None
        return real_notification(**kwargs)

    monkeypatch.setattr(notifications_service, "Notification", broken)


@pytest.fixture
def failing_push(monkeypatch):
    calls = []

    async def unreachable(token, title, body, data=None):
        calls.append(token)
        raise httpx.ConnectError("fcm unreachable")

    monkeypatch.setattr(notifications_service, "send_push", unreachable)
    return calls


async def _restaurant_with_reachable_owner(seed, **kwargs):
    owner = await seed.user(role=Role.RESTAURANT_OWNER, firebase_token="owner-device")
    return await seed.restaurant(owner=owner, **kwargs)


@pytest.mark.asyncio
async def test_payment_survives_notification_store_failure(integration_client, seed, headers_for, failing_store):
    user = await seed.user()
    restaurant = await seed.restaurant(name="Store Down Bistro")
    await seed.balance(user, restaurant, balance="30.00")

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": restaurant.id, "currencyType": "balance", "amount": 12},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["remaining"] == 18

    row = await seed.get(UserRestaurantBalance, user_id=user.id, restaurant_id=restaurant.id)
    assert float(row.balance) == 18.0
    assert len(await seed.all(Purchase, user_id=user.id)) == 1
    assert await seed.all(Notification) == []


@pytest.mark.asyncio
async def test_group_payment_survives_notification_store_failure(
    integration_client, seed, headers_for, failing_store
):
    user = await seed.user()
    owner = await seed.restaurant(restaurant_id="a-owner")
    member = await seed.restaurant(restaurant_id="b-member")
    group = await seed.group(owner, members=[member], name="Down Group")
    await seed.balance(user, owner, stars_meal=5)
    await seed.balance(user, member, stars_meal=5)

    resp = await integration_client.post(
        "/api/client/balance/pay",
        json={"targetId": group.id, "currencyType": "stars_meal", "amount": 8},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    rows = {row.restaurant_id: row for row in await seed.all(UserRestaurantBalance, user_id=user.id)}
    assert rows[owner.id].stars_meal == 0
    assert rows[member.id].stars_meal == 2
    assert len(await seed.all(Purchase, user_id=user.id)) == 1


@pytest.mark.asyncio
async def test_gift_survives_notification_store_failure(integration_client, seed, headers_for, failing_store):
    sender = await seed.user(full_name="Sender")
    recipient = await seed.user(full_name="Recipient")
    restaurant = await seed.restaurant()
    await seed.balance(sender, restaurant, stars_drink=10)

    resp = await integration_client.post(
        "/api/client/balance/gift",
        json={"qrCode": recipient.qr_code, "targetId": restaurant.id, "currencyType": "stars_drink", "amount": 4},
        headers=headers_for(sender),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["recipient_id"] == recipient.id

    sender_row = await seed.get(UserRestaurantBalance, user_id=sender.id, restaurant_id=restaurant.id)
    recipient_row = await seed.get(UserRestaurantBalance, user_id=recipient.id, restaurant_id=restaurant.id)
    assert sender_row.stars_drink == 6
    assert recipient_row.stars_drink == 4
    assert len(await seed.all(Gift, from_user_id=sender.id)) == 1
    assert await seed.all(Notification) == []


@pytest.mark.asyncio
async def test_scan_survives_notification_store_failure(integration_client, seed, headers_for, failing_store):
    user = await seed.user()
    restaurant = await seed.restaurant()

    resp = await integration_client.post(
        "/api/client/balance/scan-qr",
        json={"qrCode": restaurant.qr_code_meal, "latitude": restaurant.latitude, "longitude": restaurant.longitude},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["stars_meal"] == 10

    row = await seed.get(UserRestaurantBalance, user_id=user.id, restaurant_id=restaurant.id)
    assert row.stars_meal == 10
    assert len(await seed.all(ScanLog, user_id=user.id)) == 1


@pytest.mark.asyncio
async def test_payment_survives_push_failure(integration_client, seed, headers_for, failing_push, caplog):
    user = await seed.user(firebase_token="payer-device")
    restaurant = await _restaurant_with_reachable_owner(seed)
    await seed.balance(user, restaurant, balance="20.00")

    with caplog.at_level(logging.WARNING, logger="services.notifications"):
        resp = await integration_client.post(
            "/api/client/balance/pay",
            json={"targetId": restaurant.id, "currencyType": "balance", "amount": 5},
            headers=headers_for(user),
        )
    assert resp.status_code == 200

    row = await seed.get(UserRestaurantBalance, user_id=user.id, restaurant_id=restaurant.id)
    assert float(row.balance) == 15.0
    assert len(await seed.all(Purchase, user_id=user.id)) == 1
    assert sorted(failing_push) == ["owner-device", "payer-device"]
    # The inbox entries are stored even though the device push failed.
    assert [note.title for note in await seed.all(Notification, user_id=user.id)] == ["Payment Successful"]
    assert "Push notification failed" in caplog.text


@pytest.mark.asyncio
async def test_gift_survives_push_failure(integration_client, seed, headers_for, failing_push):
    sender = await seed.user(firebase_token="sender-device")
    recipient = await seed.user(firebase_token="recipient-device")
    restaurant = await seed.restaurant()
    await seed.balance(sender, restaurant, balance="9.00")

    resp = await integration_client.post(
        "/api/client/balance/gift",
        json={"qrCode": recipient.qr_code, "targetId": restaurant.id, "currencyType": "balance", "amount": 4},
        headers=headers_for(sender),
    )
    assert resp.status_code == 200

    sender_row = await seed.get(UserRestaurantBalance, user_id=sender.id, restaurant_id=restaurant.id)
    recipient_row = await seed.get(UserRestaurantBalance, user_id=recipient.id, restaurant_id=restaurant.id)
    assert float(sender_row.balance) == 5.0
    assert float(recipient_row.balance) == 4.0
    assert len(await seed.all(Gift, from_user_id=sender.id)) == 1
    assert sorted(failing_push) == ["recipient-device", "sender-device"]


@pytest.mark.asyncio
async def test_scan_survives_push_failure(integration_client, seed, headers_for, failing_push):
    user = await seed.user(firebase_token="scanner-device")
    restaurant = await seed.restaurant()

    resp = await integration_client.post(
        "/api/client/balance/scan-qr",
        json={"qrCode": restaurant.qr_code_drink, "latitude": restaurant.latitude, "longitude": restaurant.longitude},
        headers=headers_for(user),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["stars_drink"] == 10

    row = await seed.get(UserRestaurantBalance, user_id=user.id, restaurant_id=restaurant.id)
    assert row.stars_drink == 10
    assert failing_push == ["scanner-device"]
