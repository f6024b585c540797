"""Supabase-backed storage for ledger blobs."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from fit_buddy.domain.errors import PersistenceError
from fit_buddy.services.ledger import LedgerStorage


@dataclass
class SupabaseLedgerStorage(LedgerStorage):
    """Supabase implementation storing one row per key."""

    client: Client
    table: str = "ledger_items"

    def get_item(self, key: str) -> str | None:
        """Return the stored value for a key."""
        try:
            response = (
                self.client.table(self.table)
                .select("value")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError(f"Could not read {key}") from exc
        if not response.data:
            return None
        value = response.data[0].get("value")
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        """Insert or replace the row for a key."""
        try:
            self.client.table(self.table).upsert(
                {
                    "key": key,
                    "value": value,
                    "updated_at": datetime.now(tz=UTC).isoformat(),
                },
                on_conflict="key",
            ).execute()
        except Exception as exc:
            raise PersistenceError(f"Could not write {key}") from exc
