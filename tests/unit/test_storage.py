"""Unit tests for storage adapters and checkout persistence."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.core.storage import FileStorage, InMemoryStorage, SupabaseStorage, create_storage_backend
from src.models.checkout import SUBMITTING, StorageKey
from src.schemas.checkout import Address, CheckoutSession, CheckoutState, OrderPreview
from src.services.checkout_persistence import CheckoutPersistence


class TestInMemoryStorage:
    """Tests for InMemoryStorage."""

    def test_set_get_delete(self) -> None:
        """Test basic key lifecycle and namespace isolation."""
        storage = InMemoryStorage()

        storage.set("user-a", "checkout_current_step", 2)
        storage.set("user-b", "checkout_current_step", 1)

        assert storage.get("user-a", "checkout_current_step") == 2
        assert storage.get("user-b", "checkout_current_step") == 1
        storage.delete("user-a", "checkout_current_step")
        assert storage.get("user-a", "checkout_current_step") is None
        assert storage.keys("user-b") == ["checkout_current_step"]

    def test_values_are_copies(self) -> None:
        """Test that mutating a read value does not change the stored one."""
        storage = InMemoryStorage()
        storage.set("user-a", "blob", {"items": [1]})

        value = storage.get("user-a", "blob")
        value["items"].append(2)

        assert storage.get("user-a", "blob") == {"items": [1]}


class TestFileStorage:
    """Tests for FileStorage."""

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        """Test that a new adapter on the same directory sees earlier writes."""
        FileStorage(tmp_path).set("user/../a", "order_completed", True)

        reopened = FileStorage(tmp_path)

        assert reopened.get("user/../a", "order_completed") is True
        assert all(path.parent == tmp_path for path in tmp_path.iterdir())

    def test_unreadable_file_reads_as_empty(self, tmp_path: Path) -> None:
        """Test that a corrupt document is treated as empty."""
        storage = FileStorage(tmp_path)
        (tmp_path / "user-a.json").write_text("{not json", encoding="utf-8")

        assert storage.get("user-a", "checkout_state") is None
        assert storage.keys("user-a") == []


class TestSupabaseStorage:
    """Tests for SupabaseStorage."""

    def test_set_upserts_on_namespace_and_key(self) -> None:
        """Test that writes upsert a (namespace, key, value) row."""
        client = MagicMock()
        storage = SupabaseStorage(client, "checkout_storage")

        storage.set("user-a", "checkout_current_step", 3)

        client.table.assert_called_with("checkout_storage")
        client.table.return_value.upsert.assert_called_once_with(
            {"namespace": "user-a", "key": "checkout_current_step", "value": 3},
            on_conflict="namespace,key",
        )

    def test_get_returns_none_for_missing_row(self) -> None:
        """Test that a missing row reads as None."""
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.eq.return_value
        chain.maybe_single.return_value.execute.return_value = None

        assert SupabaseStorage(client).get("user-a", "checkout_state") is None


class TestCreateStorageBackend:
    """Tests for create_storage_backend()."""

    def test_selects_memory_and_file(self, tmp_path: Path) -> None:
        """Test backend selection from settings."""
        settings = MagicMock()
        settings.checkout_storage_backend = "memory"
        assert isinstance(create_storage_backend(settings), InMemoryStorage)

        settings.checkout_storage_backend = "file"
        settings.checkout_storage_dir = str(tmp_path / "state")
        assert isinstance(create_storage_backend(settings), FileStorage)


class TestCheckoutPersistence:
    """Tests for CheckoutPersistence."""

    def test_save_and_restore_round_trip(
        self,
        persistence: CheckoutPersistence,
        sample_address: Address,
        make_session,
    ) -> None:
        """Test that a saved snapshot restores field for field."""
        state = CheckoutState(
            current_step=2,
            shipping_address=sample_address,
            shipping_method="EXPRESS",
            session=make_session(),
        )

        persistence.save(state)
        restored = persistence.restore()

        assert restored == state
        assert persistence.saved_step() == 2
        assert persistence.restore_session().id == "cs-1"

    def test_restore_falls_back_to_session_and_step_blobs(
        self,
        persistence: CheckoutPersistence,
        storage: InMemoryStorage,
        make_session,
    ) -> None:
        """Test restoring from individual blobs when no full snapshot exists."""
        storage.set(persistence.namespace, StorageKey.CHECKOUT_SESSION, make_session().model_dump(mode="json"))
        storage.set(persistence.namespace, StorageKey.CURRENT_STEP, 1)

        restored = persistence.restore()

        assert restored is not None
        assert restored.current_step == 1
        assert isinstance(restored.session, CheckoutSession)

    def test_restore_ignores_unreadable_snapshot(
        self,
        persistence: CheckoutPersistence,
        storage: InMemoryStorage,
    ) -> None:
        """Test that a malformed snapshot is discarded."""
        storage.set(persistence.namespace, StorageKey.CHECKOUT_STATE, {"currentStep": 9})

        assert persistence.restore() is None

    def test_restore_reflects_submission_marker(self, persistence: CheckoutPersistence) -> None:
        """Test that an in-progress submission survives a reload."""
        persistence.save(CheckoutState(current_step=3))
        persistence.mark_submitting()

        restored = persistence.restore()

        assert restored.is_placing_order is True
        assert persistence.is_submitting()

    def test_clear_keeps_confirmation_markers(
        self,
        persistence: CheckoutPersistence,
        storage: InMemoryStorage,
        sample_preview: OrderPreview,
    ) -> None:
        """Test that clear removes checkout keys but not the last order."""
        persistence.save(CheckoutState(current_step=3))
        persistence.cache_preview(sample_preview)
        storage.set(persistence.namespace, StorageKey.ORDER_SUBMISSION, SUBMITTING)
        persistence.record_order_completion("order-9", "cs-1")

        persistence.clear()

        for key in StorageKey.CHECKOUT_KEYS:
            assert storage.get(persistence.namespace, key) is None
        assert persistence.last_order() == {
            "last_order_id": "order-9",
            "last_session_id": "cs-1",
            "order_completed": True,
        }

    def test_cached_preview(self, persistence: CheckoutPersistence, sample_preview: OrderPreview) -> None:
        """Test that the fallback preview is read back."""
        assert persistence.cached_preview() is None

        persistence.cache_preview(sample_preview)

        assert persistence.cached_preview() == sample_preview

    @pytest.mark.parametrize("value", [None, "done"])
    def test_is_submitting_requires_exact_marker(
        self,
        persistence: CheckoutPersistence,
        storage: InMemoryStorage,
        value: str | None,
    ) -> None:
        """Test that only the submitting marker counts."""
        if value is not None:
            storage.set(persistence.namespace, StorageKey.ORDER_SUBMISSION, value)

        assert persistence.is_submitting() is False
