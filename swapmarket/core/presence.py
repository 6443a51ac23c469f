from typing import Dict

VISIBLE = "visible"
HIDDEN = "hidden"


class PresenceRegistry:
    """Tracks the visibilityState reported by each connected client."""

    def __init__(self):
        self._connections: Dict[str, Dict[str, str]] = {}

    def report(self, user_id: str, connection_id: str, state: str) -> None:
        if state not in (VISIBLE, HIDDEN):
            raise ValueError(f"Unknown visibility state: {state}")
        self._connections.setdefault(user_id, {})[connection_id] = state

    def disconnect(self, user_id: str, connection_id: str) -> None:
        connections = self._connections.get(user_id)
        if connections is None:
            return
        connections.pop(connection_id, None)
        if not connections:
            del self._connections[user_id]

    def is_foreground(self, user_id: str) -> bool:
        return VISIBLE in self._connections.get(user_id, {}).values()
