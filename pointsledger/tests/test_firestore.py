"""
Firestore backend tests. Run against the emulator:

    firebase emulators:start --only firestore
    FIRESTORE_EMULATOR_HOST=127.0.0.1:8080 pytest pointsledger/tests/test_firestore.py
"""

import os
from uuid import uuid4

import pytest

from pointsledger.errors import FailedPreconditionError, PermissionDeniedError
from pointsledger.models import LISTINGS, USERS
from pointsledger.service import LedgerService

pytestmark = pytest.mark.skipif(
    not os.getenv("FIRESTORE_EMULATOR_HOST"),
    reason="FIRESTORE_EMULATOR_HOST not set",
)


@pytest.fixture
def client():
    from google.cloud import firestore

    return firestore.Client(project="demo-plshelp")


@pytest.fixture
def storage(client):
    from pointsledger.firestore_storage import FirestoreStorage

    return FirestoreStorage(client)


def test_listing_lifecycle(client, storage):
    owner, helper, listing_id = (f"{name}-{uuid4().hex}" for name in ("owner", "helper", "listing"))
    client.collection(USERS).document(owner).set({"points": 500})
    client.collection(USERS).document(helper).set({"points": 0})
    client.collection(LISTINGS).document(listing_id).set({"ownerID": owner, "price": "200", "status": "active"})
    service = LedgerService(storage)

    service.create_listing(owner, 150)
    with pytest.raises(PermissionDeniedError):
        service.complete_listing(helper, listing_id, helper)
    service.complete_listing(owner, listing_id, helper)
    with pytest.raises(FailedPreconditionError):
        service.complete_listing(owner, listing_id, helper)

    assert client.collection(USERS).document(owner).get().to_dict()["points"] == 350
    assert client.collection(USERS).document(helper).get().to_dict()["points"] == 200
    listing = client.collection(LISTINGS).document(listing_id).get().to_dict()
    assert listing["status"] == "fulfilled"
    assert listing["fulfilledTimestamp"] is not None


def test_redemption_history(storage):
    user = f"user-{uuid4().hex}"
    service = LedgerService(storage)
    service.register_user(user, name="Dana")

    response = service.redeem_item(user, 100, "Coffee Voucher")
    history = service.list_redemptions(user)

    assert response.remaining_points == 400
    assert history.total_count == 1
    assert history.redemptions[0].id == response.redemption_id
    assert history.redemptions[0].timestamp is not None
