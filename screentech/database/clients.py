"""Database client initializers."""
from __future__ import annotations

from supabase import Client, create_client

from screentech.app.config import Settings, settings


class DatabaseClients:
    def __init__(self, config: Settings = settings) -> None:
        self._config = config
        self._supabase: Client | None = None

    @property
    def supabase(self) -> Client:
        if self._supabase is None:
            if not self._config.supabase_url or not self._config.supabase_key:
                raise RuntimeError("Supabase credentials are missing")
            self._supabase = create_client(self._config.supabase_url, self._config.supabase_key)
        return self._supabase
