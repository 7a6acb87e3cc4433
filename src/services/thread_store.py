"""Durable mapping from Slack user ID to assistant thread ID."""

import json
import os
from typing import Awaitable, Callable, Optional

from src.services.supabase_client import get_supabase_client
from src.utils.errors import ThreadStoreCorruptError, ThreadStoreError
from src.utils.logging import get_structured_logger, mask_user_id
from src.utils.settings import Settings, get_settings

logger = get_structured_logger(__name__)

DEFAULT_STORAGE_FILE = "user-threads.json"
DEFAULT_SUPABASE_TABLE = "user_threads"


class ThreadMapPersistence:
    """Strategy that loads and saves the whole user -> thread mapping."""

    description = "thread map"

    def exists(self) -> bool:
        raise NotImplementedError

    def load(self) -> dict[str, str]:
        raise NotImplementedError

    def save(self, threads: dict[str, str]) -> None:
        raise NotImplementedError


def _validate_mapping(data: object, source: str) -> dict[str, str]:
    if not isinstance(data, dict):
        raise ThreadStoreCorruptError(f"{source} does not contain a JSON object")
    for user_id, thread_id in data.items():
        if not isinstance(thread_id, str):
            raise ThreadStoreCorruptError(f"{source} has a non-string thread ID for {user_id}")
    return dict(data)


class JsonFilePersistence(ThreadMapPersistence):
    """Human-readable JSON document rewritten on every save."""

    def __init__(self, path: str = DEFAULT_STORAGE_FILE):
        self.path = os.path.abspath(path)
        self.description = self.path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ThreadStoreCorruptError(f"Cannot read {self.path}: {e}") from e
        return _validate_mapping(data, self.path)

    def save(self, threads: dict[str, str]) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(threads, f, indent=2)
        except OSError as e:
            raise ThreadStoreError(f"Failed to write {self.path}: {e}") from e


class SupabasePersistence(ThreadMapPersistence):
    """Rows of ``{user_id, thread_id}`` in a Supabase table."""

    def __init__(self, client, table: str = DEFAULT_SUPABASE_TABLE):
        self.client = client
        self.table = table
        self.description = f"supabase:{table}"

    def exists(self) -> bool:
        # The table is provisioned by migration; an empty table is an empty map
        return True

    def load(self) -> dict[str, str]:
        try:
            result = self.client.table(self.table).select("user_id,thread_id").execute()
        except Exception as e:
            raise ThreadStoreError(f"Failed to load thread map from {self.table}: {e}") from e

        rows = result.data or []
        threads = {}
        for row in rows:
            if not isinstance(row, dict):
                raise ThreadStoreCorruptError(f"Unexpected row in {self.table}: {row!r}")
            threads[row.get("user_id")] = row.get("thread_id")
        return _validate_mapping(threads, self.table)

    def save(self, threads: dict[str, str]) -> None:
        try:
            existing = self.client.table(self.table).select("user_id").execute()
            stale = [
                row["user_id"] for row in (existing.data or [])
                if row.get("user_id") not in threads
            ]
            if threads:
                rows = [
                    {"user_id": user_id, "thread_id": thread_id}
                    for user_id, thread_id in threads.items()
                ]
                self.client.table(self.table).upsert(rows, on_conflict="user_id").execute()
            if stale:
                self.client.table(self.table).delete().in_("user_id", stale).execute()
        except Exception as e:
            raise ThreadStoreError(f"Failed to save thread map to {self.table}: {e}") from e


class ThreadStore:
    """
    In-memory user -> thread mapping backed by a persistence strategy.

    The mapping is loaded once at construction and every mutation writes the
    full mapping back. There is no write locking: one process owns the store.
    A corrupt backing document is discarded and replaced by an empty mapping,
    since threads can always be recreated.
    """

    def __init__(self, persistence: ThreadMapPersistence):
        self._persistence = persistence
        self._threads: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self._persistence.exists():
            logger.info(
                "No existing thread storage found, creating it",
                storage=self._persistence.description
            )
            self._save()
            return

        try:
            self._threads = self._persistence.load()
        except ThreadStoreCorruptError as e:
            logger.error(
                "Error loading thread storage, starting empty",
                storage=self._persistence.description,
                error=str(e)
            )
            self._threads = {}
            self._save()
            return

        logger.info(
            "Loaded thread mappings",
            storage=self._persistence.description,
            thread_count=len(self._threads)
        )

    def _save(self) -> None:
        try:
            self._persistence.save(dict(self._threads))
        except ThreadStoreError as e:
            logger.error(
                "Error saving thread storage",
                storage=self._persistence.description,
                error=str(e)
            )
            raise
        logger.debug(
            "Saved thread mappings",
            storage=self._persistence.description,
            thread_count=len(self._threads)
        )

    def get(self, user_id: str) -> Optional[str]:
        return self._threads.get(user_id)

    def set(self, user_id: str, thread_id: str) -> None:
        """Map a user to a thread, replacing any previous thread."""
        self._threads[user_id] = thread_id
        self._save()

    def has(self, user_id: str) -> bool:
        return user_id in self._threads

    def delete(self, user_id: str) -> None:
        self._threads.pop(user_id, None)
        self._save()

    def clear(self) -> None:
        self._threads.clear()
        self._save()

    def size(self) -> int:
        return len(self._threads)

    def get_all(self) -> dict[str, str]:
        """Return a copy of every mapping."""
        return dict(self._threads)

    async def get_or_create(
        self,
        user_id: str,
        create_thread: Callable[[], Awaitable[str]]
    ) -> str:
        """
        Return the user's thread ID, creating and storing a thread if needed.

        If another task stored a thread for the user while this one was
        creating, the stored thread wins and the new one is left unused.
        """
        thread_id = self.get(user_id)
        if thread_id:
            return thread_id

        logger.info("Creating new thread for user", slack_user_id=mask_user_id(user_id))
        new_thread_id = await create_thread()

        existing = self.get(user_id)
        if existing:
            logger.warning(
                "Thread created concurrently for user, keeping stored thread",
                slack_user_id=mask_user_id(user_id),
                thread_id=existing,
                discarded_thread_id=new_thread_id
            )
            return existing

        self.set(user_id, new_thread_id)
        return new_thread_id


def build_persistence(settings: Settings) -> ThreadMapPersistence:
    """Select the persistence backend named by the settings."""
    if settings.thread_store_backend == "supabase":
        client = get_supabase_client(settings.supabase_url, settings.supabase_key)
        return SupabasePersistence(client)
    return JsonFilePersistence(settings.thread_store_path)


_thread_store: Optional[ThreadStore] = None


def get_thread_store() -> ThreadStore:
    """Get or create the process-wide thread store."""
    global _thread_store
    if _thread_store is None:
        _thread_store = ThreadStore(build_persistence(get_settings()))
    return _thread_store
