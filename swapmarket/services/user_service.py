from typing import Dict

from ..core.store import DocumentStore

DEFAULT_DISPLAY_NAME = "User"


class UserDirectory:
    """
    Read-through lookup of display names from the identity collection.

    Names are resolved on every call and never copied onto other documents.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_display_name(self, user_id: str) -> str:
        user = await self.store.get_document("users", user_id)
        if not user:
            return DEFAULT_DISPLAY_NAME
        name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
        return name or DEFAULT_DISPLAY_NAME

    async def get_display_names(self, *user_ids: str) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for user_id in user_ids:
            if user_id not in names:
                names[user_id] = await self.get_display_name(user_id)
        return names
