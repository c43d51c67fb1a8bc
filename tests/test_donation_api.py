import httpx
from sqlalchemy import update

from core.exceptions import GatewayError
from core.security import create_access_token
from models import Campaign, CampaignStatus, Donation, DonationStatus
from tests.conftest import load, payment_signature


def order_payload(campaign_id, **overrides):
    payload = {
        "campaignId": campaign_id,
        "amount": "500.00",
        "donorName": "Asha Rao",
        "donorEmail": "Asha.Donor@Gmail.com",
        "donorPhone": "9876543210",
        "donorPan": "abcde1234f",
        "isAnonymous": False,
        "message": "For the school kits",
    }
    payload.update(overrides)
    return payload


async def create_order(client, auth_headers, campaign_id, **overrides):
    response = await client.post(
        "/api/v1/donation/create-order", json=order_payload(campaign_id, **overrides), headers=auth_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def verify(client, auth_headers, donation_id, order_id, payment_id, signature=None):
    return await client.post(
        "/api/v1/donation/verify",
        json={
            "donationId": donation_id,
            "providerOrderId": order_id,
            "providerPaymentId": payment_id,
            "providerSignature": signature or payment_signature(order_id, payment_id),
        },
        headers=auth_headers,
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# ---------- create order ----------

async def test_create_order_requires_authentication(client, campaign):
    response = await client.post("/api/v1/donation/create-order", json=order_payload(campaign.id))
    assert response.status_code == 401
    assert response.json() == {"status": "error", "message": "Not authenticated", "data": None}


async def test_create_order_rejects_unknown_user_token(client, campaign):
    headers = {"Authorization": f"Bearer {create_access_token('no-such-user')}"}
    response = await client.post("/api/v1/donation/create-order", json=order_payload(campaign.id), headers=headers)
    assert response.status_code == 401


async def test_create_order(client, auth_headers, session_factory, gateway, campaign, user):
    data = await create_order(client, auth_headers, campaign.id)

    assert data["order"]["amount"] == 50000
    assert data["order"]["currency"] == "INR"
    assert data["order"]["id"] in gateway.orders

    donation = await load(session_factory, Donation, data["donationId"])
    assert donation.status == DonationStatus.PENDING
    assert donation.provider_order_id == data["order"]["id"]
    assert donation.provider_payment_id is None
    assert donation.donor_id == user.id
    assert donation.donor_email == "asha.donor@gmail.com"
    assert donation.donor_pan == "ABCDE1234F"


async def test_anonymous_donation_is_not_linked_to_user(client, auth_headers, session_factory, campaign):
    data = await create_order(client, auth_headers, campaign.id, isAnonymous=True)
    donation = await load(session_factory, Donation, data["donationId"])
    assert donation.donor_id is None
    assert donation.is_anonymous


async def test_create_order_validation_errors(client, auth_headers, campaign):
    for overrides in ({"amount": "0"}, {"amount": "-5"}, {"donorPhone": "12345"},
                      {"donorEmail": "not-an-email"}, {"donorName": "   "}, {"donorPan": "123"}):
        response = await client.post(
            "/api/v1/donation/create-order", json=order_payload(campaign.id, **overrides), headers=auth_headers,
        )
        assert response.status_code == 400, overrides
        body = response.json()
        assert body["status"] == "error"
        assert body["message"]


async def test_create_order_unknown_campaign(client, auth_headers, campaign):
    response = await client.post(
        "/api/v1/donation/create-order", json=order_payload(campaign.id + 100), headers=auth_headers,
    )
    assert response.status_code == 404
    assert response.json()["message"] == "Campaign not found"


async def test_create_order_closed_campaign(client, auth_headers, session_factory, campaign):
    async with session_factory() as db:
        await db.execute(update(Campaign).where(Campaign.id == campaign.id).values(status=CampaignStatus.CLOSED))
        await db.commit()

    response = await client.post(
        "/api/v1/donation/create-order", json=order_payload(campaign.id), headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "This campaign is not accepting donations"


async def test_create_order_retries_then_reports_unavailable(client, auth_headers, gateway, campaign):
    gateway.fail("create_order", *[httpx.ConnectError("refused")] * 3)

    response = await client.post(
        "/api/v1/donation/create-order", json=order_payload(campaign.id), headers=auth_headers,
    )
    assert response.status_code == 503
    assert gateway.calls["create_order"] == 3


async def test_create_order_recovers_from_one_timeout(client, auth_headers, gateway, campaign):
    gateway.fail("create_order", httpx.ConnectTimeout("slow"))
    data = await create_order(client, auth_headers, campaign.id)
    assert data["donationId"]
    assert gateway.calls["create_order"] == 2


async def test_create_order_gateway_rejection(client, auth_headers, gateway, campaign):
    gateway.fail("create_order", GatewayError("Order amount less than minimum", status_code=400))

    response = await client.post(
        "/api/v1/donation/create-order", json=order_payload(campaign.id), headers=auth_headers,
    )
    assert response.status_code == 502
    assert response.json()["message"] == "Order amount less than minimum"


# ---------- verify ----------

async def test_verify_settles_and_issues_certificate(
        client, auth_headers, session_factory, gateway, campaign, certificate_storage):
    data = await create_order(client, auth_headers, campaign.id)
    order_id = data["order"]["id"]
    payment_id = gateway.capture(order_id)

    response = await verify(client, auth_headers, data["donationId"], order_id, payment_id)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "success"
    assert body["message"] == "Payment verified successfully"
    assert body["data"]["donation"]["status"] == "success"
    assert body["data"]["donation"]["providerPaymentId"] == payment_id

    updated = await load(session_factory, Campaign, campaign.id)
    assert float(updated.raised_amount) == 500.0
    assert updated.donor_count == 1

    # post-settlement task has run by the time the ASGI call returns
    donation = await load(session_factory, Donation, data["donationId"])
    assert donation.certificate_sent
    assert (certificate_storage / donation.certificate_url).read_bytes().startswith(b"%PDF")


async def test_verify_twice_reports_already_verified(client, auth_headers, session_factory, gateway, campaign):
    data = await create_order(client, auth_headers, campaign.id)
    order_id = data["order"]["id"]
    payment_id = gateway.capture(order_id)

    await verify(client, auth_headers, data["donationId"], order_id, payment_id)
    response = await verify(client, auth_headers, data["donationId"], order_id, payment_id)

    assert response.status_code == 200
    assert response.json()["message"] == "Payment already verified"
    assert (await load(session_factory, Campaign, campaign.id)).donor_count == 1


async def test_verify_with_tampered_signature(client, auth_headers, session_factory, gateway, campaign):
    data = await create_order(client, auth_headers, campaign.id)
    order_id = data["order"]["id"]
    payment_id = gateway.capture(order_id)

    response = await verify(client, auth_headers, data["donationId"], order_id, payment_id, signature="0" * 64)

    assert response.status_code == 400
    assert response.json()["message"] == "Payment verification failed"
    assert (await load(session_factory, Donation, data["donationId"])).status == DonationStatus.FAILED


async def test_verify_rejects_blank_fields(client, auth_headers):
    response = await client.post(
        "/api/v1/donation/verify",
        json={"donationId": 1, "providerOrderId": "order_1", "providerPaymentId": "  ", "providerSignature": "x"},
        headers=auth_headers,
    )
    assert response.status_code == 400


async def test_verify_unknown_donation(client, auth_headers):
    response = await verify(client, auth_headers, 999, "order_1", "pay_1")
    assert response.status_code == 404
    assert response.json()["message"] == "Donation not found"


# ---------- queries ----------

async def test_my_donations(client, auth_headers, campaign):
    await create_order(client, auth_headers, campaign.id)
    await create_order(client, auth_headers, campaign.id, amount="100.00")

    response = await client.get("/api/v1/donation/my-donations", headers=auth_headers)

    assert response.status_code == 200
    donations = response.json()["data"]["donations"]
    assert sorted(d["amount"] for d in donations) == [100.0, 500.0]


async def test_campaign_donations_hide_anonymous_donors(client, auth_headers, gateway, campaign):
    for anonymous in (False, True):
        data = await create_order(client, auth_headers, campaign.id, isAnonymous=anonymous)
        order_id = data["order"]["id"]
        await verify(client, auth_headers, data["donationId"], order_id, gateway.capture(order_id))
    # pending donations are not listed
    await create_order(client, auth_headers, campaign.id)

    response = await client.get(f"/api/v1/donation/campaign/{campaign.id}", params={"page": 1, "limit": 10})

    assert response.status_code == 200
    page = response.json()["data"]
    assert page["total"] == 2
    assert sorted(item["donorName"] for item in page["items"]) == ["Anonymous", "Asha Rao"]


# ---------- certificate ----------

async def test_certificate_download(client, auth_headers, gateway, campaign):
    data = await create_order(client, auth_headers, campaign.id)
    order_id = data["order"]["id"]
    await verify(client, auth_headers, data["donationId"], order_id, gateway.capture(order_id))

    response = await client.get(f"/api/v1/donation/certificate/{data['donationId']}", headers=auth_headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "80G-Certificate-80G-" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


async def test_certificate_regenerated_when_file_lost(
        client, auth_headers, session_factory, gateway, campaign, certificate_storage):
    data = await create_order(client, auth_headers, campaign.id)
    order_id = data["order"]["id"]
    await verify(client, auth_headers, data["donationId"], order_id, gateway.capture(order_id))
    donation = await load(session_factory, Donation, data["donationId"])
    (certificate_storage / donation.certificate_url).unlink()

    response = await client.get(f"/api/v1/donation/certificate/{donation.id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.content.startswith(b"%PDF")


async def test_certificate_only_for_donor(client, auth_headers, gateway, campaign, other_user):
    data = await create_order(client, auth_headers, campaign.id)
    order_id = data["order"]["id"]
    await verify(client, auth_headers, data["donationId"], order_id, gateway.capture(order_id))

    other_headers = {"Authorization": f"Bearer {create_access_token(other_user.uuid)}"}
    response = await client.get(f"/api/v1/donation/certificate/{data['donationId']}", headers=other_headers)
    assert response.status_code == 403


async def test_certificate_not_available_before_settlement(client, auth_headers, campaign):
    data = await create_order(client, auth_headers, campaign.id)

    response = await client.get(f"/api/v1/donation/certificate/{data['donationId']}", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["message"] == "Certificate not available"
