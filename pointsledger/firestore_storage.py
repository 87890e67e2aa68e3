import logging
from typing import Any, Callable, Optional, TypeVar

from firebase_admin import firestore as admin_fs
from google.cloud.firestore import Client
from google.cloud.firestore import Transaction as FirestoreTxn
from google.cloud.firestore_v1.base_query import FieldFilter

from .storage import SERVER_TIMESTAMP, LedgerStore, Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_firestore(data: dict[str, Any]) -> dict[str, Any]:
    return {key: admin_fs.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value for key, value in data.items()}


class FirestoreTransaction(Transaction):
    def __init__(self, client: Client, transaction: FirestoreTxn):
        self._client = client
        self._transaction = transaction

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        snapshot = self._client.collection(collection).document(doc_id).get(transaction=self._transaction)
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._transaction.set(self._client.collection(collection).document(doc_id), _to_firestore(data))

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        self._transaction.update(self._client.collection(collection).document(doc_id), _to_firestore(fields))

    def new_document_id(self, collection: str) -> str:
        return self._client.collection(collection).document().id


class FirestoreStorage(LedgerStore):
    """Ledger store backed by Cloud Firestore transactions.

    Firestore retries the transaction function on contention, so the
    function passed to ``run_transaction`` must be free of side effects
    outside the transaction.
    """

    def __init__(self, client: Optional[Client] = None, max_attempts: int = 5):
        self.client = client or admin_fs.client()
        self.max_attempts = max_attempts

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        @admin_fs.transactional
        def _run(transaction: FirestoreTxn) -> T:
            return fn(FirestoreTransaction(self.client, transaction))

        return _run(self.client.transaction(max_attempts=self.max_attempts))

    def find(self, collection: str, field: str, value: Any) -> list[tuple[str, dict[str, Any]]]:
        query = self.client.collection(collection).where(filter=FieldFilter(field, "==", value))
        return [(snapshot.id, snapshot.to_dict()) for snapshot in query.stream()]
