"""Durable subscription store.

One document per watch channel, keyed by channel id, in a Firestore
collection (``watchChannels`` by default). Queries rely on the composite
``(status ASC, expiresAt ASC)`` index declared in firestore.indexes.json.

``InMemorySubscriptionStore`` implements the same interface for running
without Firestore.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TypeVar

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError

from calendar_sync.logging_config import get_logger
from calendar_sync.models.subscription import Subscription, SubscriptionStatus
from calendar_sync.utils.clock import Clock

logger = get_logger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """Raised when the durable store cannot complete an operation.

    Always recoverable from the caller's point of view: the process keeps
    serving from the registry.
    """

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.cause = cause


class SubscriptionNotFoundError(StoreError):
    """Raised when updating a subscription that is not stored."""

    def __init__(self, subscription_id: str):
        super().__init__("update", f"subscription not found: {subscription_id}")
        self.subscription_id = subscription_id


class SubscriptionStore(ABC):
    """Durable store interface for watch channels."""

    @abstractmethod
    def save(self, subscription: Subscription) -> None:
        """Create or update a subscription (last write wins)."""

    @abstractmethod
    def load_all_active(self) -> List[Subscription]:
        """Get every subscription with status active."""

    @abstractmethod
    def find_expiring_before(self, threshold_millis: int) -> List[Subscription]:
        """Get active subscriptions expiring before threshold, soonest first."""

    @abstractmethod
    def update_expiry(self, subscription_id: str, new_expires_at: int) -> None:
        """Set a new expiry on an existing subscription."""

    @abstractmethod
    def delete(self, subscription_id: str) -> None:
        """Delete a subscription (no error if absent)."""

    @abstractmethod
    def mark_stopped(self, subscription_id: str) -> None:
        """Keep the record but set status stopped."""

    @abstractmethod
    def mark_expired(self, subscription_id: str) -> None:
        """Keep the record but set status expired."""

    @abstractmethod
    def get(self, subscription_id: str) -> Optional[Subscription]:
        """Get one subscription by id, None if absent."""

    @abstractmethod
    def get_all_ordered_by_expiry(self) -> List[Subscription]:
        """Get every stored subscription regardless of status, soonest expiry first."""

    @abstractmethod
    def ping(self) -> bool:
        """Check connectivity. Never raises."""


class FirestoreSubscriptionStore(SubscriptionStore):
    """Firestore-backed subscription store.

    Every Firestore or auth failure is raised as StoreError with the original
    exception kept as ``cause``.
    """

    def __init__(
        self,
        collection_name: str = "watchChannels",
        project: Optional[str] = None,
        client: Optional[firestore.Client] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the store.

        Args:
            collection_name: Firestore collection holding one document per channel
            project: GCP project, auto-detected when None
            client: Existing Firestore client (created lazily when None)
            clock: Time source for lastUpdatedAt
        """
        self._collection_name = collection_name
        self._project = project
        self._client = client
        self._clock = clock or Clock()
        self._lock = threading.Lock()

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _get_client(self) -> firestore.Client:
        with self._lock:
            if self._client is None:
                self._client = firestore.Client(project=self._project)
                logger.info(
                    "firestore_client_initialized",
                    project=self._client.project,
                    collection=self._collection_name,
                )
            return self._client

    def _collection(self):
        return self._get_client().collection(self._collection_name)

    def _run(self, operation: str, fn: Callable[[], T], **log_context: Any) -> T:
        try:
            return fn()
        except NotFound as e:
            logger.warning("store_document_not_found", operation=operation, **log_context)
            raise StoreError(operation, str(e), cause=e) from e
        except (GoogleAPIError, GoogleAuthError, ConnectionError, TimeoutError) as e:
            logger.error(
                "store_operation_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **log_context,
            )
            raise StoreError(operation, str(e), cause=e) from e

    def _parse_documents(self, snapshots) -> List[Subscription]:
        subscriptions = []
        for snapshot in snapshots:
            try:
                subscriptions.append(Subscription.from_document(snapshot.to_dict()))
            except ValidationError as e:
                logger.warning(
                    "store_document_invalid",
                    document_id=snapshot.id,
                    error=str(e),
                )
        return subscriptions

    def _apply_save(self, transaction, doc_ref, document: Dict[str, Any]) -> bool:
        snapshot = doc_ref.get(transaction=transaction)
        if snapshot.exists:
            existing = snapshot.to_dict() or {}
            # registration time belongs to the first write
            if "registeredAt" in existing:
                document["registeredAt"] = existing["registeredAt"]
            transaction.set(doc_ref, document)
            return False
        transaction.create(doc_ref, document)
        return True

    def save(self, subscription: Subscription) -> None:
        """Create or update a subscription inside a transaction.

        Racing writers for the same id resolve to whichever commits last.
        """
        document = subscription.to_document()

        def _save() -> bool:
            client = self._get_client()
            doc_ref = client.collection(self._collection_name).document(subscription.id)
            transaction = client.transaction()
            return firestore.transactional(self._apply_save)(transaction, doc_ref, document)

        created = self._run("save", _save, subscription_id=subscription.id)
        logger.info(
            "subscription_saved",
            subscription_id=subscription.id,
            scope=subscription.scope,
            expires_at=subscription.expires_at,
            created=created,
        )

    def load_all_active(self) -> List[Subscription]:
        def _load():
            query = self._collection().where(filter=FieldFilter("status", "==", SubscriptionStatus.ACTIVE.value))
            return self._parse_documents(query.stream())

        subscriptions = self._run("load_all_active", _load)
        logger.info("subscriptions_loaded_from_store", count=len(subscriptions))
        return subscriptions

    def find_expiring_before(self, threshold_millis: int) -> List[Subscription]:
        def _find():
            query = (
                self._collection()
                .where(filter=FieldFilter("status", "==", SubscriptionStatus.ACTIVE.value))
                .where(filter=FieldFilter("expiresAt", "<", threshold_millis))
                .order_by("expiresAt")
            )
            return self._parse_documents(query.stream())

        subscriptions = self._run("find_expiring_before", _find, threshold=threshold_millis)
        logger.debug("expiring_subscriptions_found", count=len(subscriptions), threshold=threshold_millis)
        return subscriptions

    def _update_fields(self, operation: str, subscription_id: str, fields: Dict[str, Any]) -> None:
        def _update():
            self._collection().document(subscription_id).update(fields)

        try:
            self._run(operation, _update, subscription_id=subscription_id)
        except StoreError as e:
            if isinstance(e.cause, NotFound):
                raise SubscriptionNotFoundError(subscription_id) from e.cause
            raise

    def update_expiry(self, subscription_id: str, new_expires_at: int) -> None:
        self._update_fields(
            "update_expiry",
            subscription_id,
            {
                "expiresAt": new_expires_at,
                "lastUpdatedAt": self._clock.now_millis(),
                "status": SubscriptionStatus.ACTIVE.value,
            },
        )
        logger.info("subscription_expiry_updated", subscription_id=subscription_id, expires_at=new_expires_at)

    def delete(self, subscription_id: str) -> None:
        self._run(
            "delete",
            lambda: self._collection().document(subscription_id).delete(),
            subscription_id=subscription_id,
        )
        logger.info("subscription_deleted_from_store", subscription_id=subscription_id)

    def mark_stopped(self, subscription_id: str) -> None:
        self._update_fields(
            "mark_stopped",
            subscription_id,
            {"status": SubscriptionStatus.STOPPED.value, "lastUpdatedAt": self._clock.now_millis()},
        )
        logger.info("subscription_marked_stopped", subscription_id=subscription_id)

    def mark_expired(self, subscription_id: str) -> None:
        self._update_fields(
            "mark_expired",
            subscription_id,
            {"status": SubscriptionStatus.EXPIRED.value, "lastUpdatedAt": self._clock.now_millis()},
        )
        logger.info("subscription_marked_expired", subscription_id=subscription_id)

    def get(self, subscription_id: str) -> Optional[Subscription]:
        """Get one subscription by id.

        Raises:
            StoreError: If the store is unreachable or the document is invalid
        """

        def _get():
            snapshot = self._collection().document(subscription_id).get()
            if not snapshot.exists:
                return None
            return snapshot.to_dict()

        document = self._run("get", _get, subscription_id=subscription_id)
        if document is None:
            return None
        try:
            return Subscription.from_document(document)
        except ValidationError as e:
            logger.warning("store_document_invalid", document_id=subscription_id, error=str(e))
            raise StoreError("get", f"invalid document {subscription_id}", cause=e) from e

    def get_all_ordered_by_expiry(self) -> List[Subscription]:
        def _get_all():
            return self._parse_documents(self._collection().order_by("expiresAt").stream())

        return self._run("get_all_ordered_by_expiry", _get_all)

    def ping(self) -> bool:
        try:
            self._run("ping", lambda: list(self._collection().limit(1).stream()))
            return True
        except StoreError:
            return False


class InMemorySubscriptionStore(SubscriptionStore):
    """Process-local store used when Firestore is disabled.

    Nothing survives a restart.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._clock = clock or Clock()

    def save(self, subscription: Subscription) -> None:
        document = subscription.to_document()
        with self._lock:
            existing = self._documents.get(subscription.id)
            if existing is not None:
                document["registeredAt"] = existing["registeredAt"]
            self._documents[subscription.id] = document

    def _parse(self, subscription_id: str, document: Dict[str, Any]) -> Subscription:
        try:
            return Subscription.from_document(dict(document))
        except ValidationError as e:
            logger.warning("store_document_invalid", document_id=subscription_id, error=str(e))
            raise StoreError("get", f"invalid document {subscription_id}", cause=e) from e

    def _matching(self, predicate: Callable[[Subscription], bool]) -> List[Subscription]:
        subscriptions = []
        with self._lock:
            for subscription_id, document in self._documents.items():
                try:
                    subscriptions.append(self._parse(subscription_id, document))
                except StoreError:
                    continue
        return sorted((s for s in subscriptions if predicate(s)), key=lambda s: s.expires_at)

    def load_all_active(self) -> List[Subscription]:
        return self._matching(lambda s: s.status == SubscriptionStatus.ACTIVE)

    def find_expiring_before(self, threshold_millis: int) -> List[Subscription]:
        return self._matching(
            lambda s: s.status == SubscriptionStatus.ACTIVE and s.expires_at < threshold_millis
        )

    def _update_fields(self, subscription_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            document = self._documents.get(subscription_id)
            if document is None:
                raise SubscriptionNotFoundError(subscription_id)
            document.update(fields)
            document["lastUpdatedAt"] = self._clock.now_millis()

    def update_expiry(self, subscription_id: str, new_expires_at: int) -> None:
        self._update_fields(
            subscription_id, {"expiresAt": new_expires_at, "status": SubscriptionStatus.ACTIVE.value}
        )

    def delete(self, subscription_id: str) -> None:
        with self._lock:
            self._documents.pop(subscription_id, None)

    def mark_stopped(self, subscription_id: str) -> None:
        self._update_fields(subscription_id, {"status": SubscriptionStatus.STOPPED.value})

    def mark_expired(self, subscription_id: str) -> None:
        self._update_fields(subscription_id, {"status": SubscriptionStatus.EXPIRED.value})

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            document = self._documents.get(subscription_id)
            return self._parse(subscription_id, document) if document is not None else None

    def get_all_ordered_by_expiry(self) -> List[Subscription]:
        return self._matching(lambda s: True)

    def ping(self) -> bool:
        return True

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    def __len__(self) -> int:
        return self.count()
