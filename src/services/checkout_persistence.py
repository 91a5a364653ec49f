"""Persistence port for checkout flow snapshots and crash-recovery markers."""

import logging
from typing import Any

from pydantic import ValidationError

from src.core.storage import StorageBackend
from src.models.checkout import SUBMITTING, OrderCompletion, StorageKey
from src.schemas.checkout import CheckoutSession, CheckoutState, OrderPreview

logger = logging.getLogger(__name__)


class CheckoutPersistence:
    """Save, restore and clear one customer's checkout flow.

    Wraps a namespaced ``StorageBackend``. Besides the full state snapshot it
    writes the individual blobs the storefront reads (session, current step,
    cached preview) and the markers that survive a reload: the submission
    in-progress flag and the last completed order.
    """

    def __init__(self, backend: StorageBackend, namespace: str) -> None:
        """Initialize persistence for a namespace.

        Args:
            backend: Storage adapter.
            namespace: Key prefix for this flow (the user id).
        """
        self.backend = backend
        self.namespace = namespace

    def _get(self, key: str) -> Any | None:
        return self.backend.get(self.namespace, key)

    def _set(self, key: str, value: Any) -> None:
        self.backend.set(self.namespace, key, value)

    def _delete(self, key: str) -> None:
        self.backend.delete(self.namespace, key)

    def save(self, state: CheckoutState) -> None:
        """Persist a full snapshot plus the session and step blobs."""
        self._set(StorageKey.CHECKOUT_STATE, state.model_dump(mode="json", by_alias=True))
        self._set(StorageKey.CURRENT_STEP, state.current_step)
        if state.session is not None:
            self._set(StorageKey.CHECKOUT_SESSION, state.session.model_dump(mode="json", by_alias=True))
        else:
            self._delete(StorageKey.CHECKOUT_SESSION)

    def restore(self) -> CheckoutState | None:
        """Rebuild the last saved state.

        Falls back to the individual session and step blobs when no full
        snapshot exists. Unreadable blobs are logged and ignored.

        Returns:
            CheckoutState | None: The restored state, or None if nothing usable was saved.
        """
        raw_state = self._get(StorageKey.CHECKOUT_STATE)
        if raw_state is not None:
            try:
                state = CheckoutState.model_validate(raw_state)
            except ValidationError as e:
                logger.error("Discarding unreadable checkout state for %s: %s", self.namespace, e)
            else:
                state.is_placing_order = self.is_submitting()
                return state

        session = self.restore_session()
        step = self._get(StorageKey.CURRENT_STEP)
        if session is None and step is None:
            return None

        state = CheckoutState(session=session, is_placing_order=self.is_submitting())
        if isinstance(step, int) and 0 <= step <= 3:
            state.current_step = step
        return state

    def restore_session(self) -> CheckoutSession | None:
        """Read the persisted checkout session blob."""
        raw_session = self._get(StorageKey.CHECKOUT_SESSION)
        if raw_session is None:
            return None
        try:
            return CheckoutSession.model_validate(raw_session)
        except ValidationError as e:
            logger.error("Discarding unreadable checkout session for %s: %s", self.namespace, e)
            return None

    def saved_step(self) -> int | None:
        """Read the persisted step index, if any."""
        step = self._get(StorageKey.CURRENT_STEP)
        return step if isinstance(step, int) else None

    def clear(self) -> None:
        """Remove every checkout key; confirmation markers are kept."""
        for key in StorageKey.CHECKOUT_KEYS:
            self._delete(key)

    # Cached preview used when pricing is unavailable

    def cache_preview(self, preview: OrderPreview) -> None:
        """Remember the last good preview as fallback pricing."""
        self._set(StorageKey.FALLBACK_DATA, preview.model_dump(mode="json", by_alias=True))

    def cached_preview(self) -> OrderPreview | None:
        """Read the fallback preview, if one was cached."""
        raw_preview = self._get(StorageKey.FALLBACK_DATA)
        if raw_preview is None:
            return None
        try:
            return OrderPreview.model_validate(raw_preview)
        except ValidationError as e:
            logger.error("Discarding unreadable cached preview for %s: %s", self.namespace, e)
            return None

    # Order submission markers

    def mark_submitting(self) -> None:
        """Record that an order submission is in progress."""
        self._set(StorageKey.ORDER_SUBMISSION, SUBMITTING)

    def clear_submitting(self) -> None:
        """Remove the submission in-progress marker."""
        self._delete(StorageKey.ORDER_SUBMISSION)

    def is_submitting(self) -> bool:
        """Whether a submission was in progress when last saved."""
        return self._get(StorageKey.ORDER_SUBMISSION) == SUBMITTING

    def record_order_completion(self, order_id: str, session_id: str) -> None:
        """Leave the markers the confirmation page reads."""
        self._set(StorageKey.LAST_ORDER_ID, order_id)
        self._set(StorageKey.LAST_SESSION_ID, session_id)
        self._set(StorageKey.ORDER_COMPLETED, True)

    def last_order(self) -> OrderCompletion:
        """Read the confirmation markers."""
        return {
            "last_order_id": self._get(StorageKey.LAST_ORDER_ID),
            "last_session_id": self._get(StorageKey.LAST_SESSION_ID),
            "order_completed": self._get(StorageKey.ORDER_COMPLETED) is True,
        }
