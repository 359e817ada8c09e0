import threading
from typing import Dict, List, Optional


class PresenceTracker:
    """Who is online: username -> id of the connection that announced them.

    The first live connection registered for a username keeps the entry until
    it closes. All access goes through the lock so the check-and-set in
    ``register`` cannot interleave with another writer.
    """

    def __init__(self):
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, username: str, connection_id: str) -> bool:
        with self._lock:
            if username in self._entries:
                return False
            self._entries[username] = connection_id
            return True

    def unregister_by_connection(self, connection_id: str) -> Optional[str]:
        with self._lock:
            for username, owner in self._entries.items():
                if owner == connection_id:
                    del self._entries[username]
                    return username
            return None

    def list_online(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def is_online(self, username: str) -> bool:
        with self._lock:
            return username in self._entries

    def connection_for(self, username: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(username)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
