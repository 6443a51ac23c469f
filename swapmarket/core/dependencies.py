import logging
from functools import lru_cache

from .config import get_settings
from .memory_store import MemoryDocumentStore
from .presence import PresenceRegistry
from .store import DocumentStore
from ..services.conversation_service import ConversationService
from ..services.notification_service import NotificationDispatcher, NotificationInbox
from ..services.offer_service import OfferService
from ..services.push_service import build_push_capability
from ..services.user_service import UserDirectory

logger = logging.getLogger(__name__)


@lru_cache()
def get_store() -> DocumentStore:
    """Supabase when credentials are configured, otherwise the in-memory store."""
    settings = get_settings()
    if settings.supabase_url and settings.supabase_key:
        from .supabase import SupabaseDocumentStore
        logger.info(f"Using Supabase document store at {settings.supabase_url}")
        return SupabaseDocumentStore()

    logger.warning("SUPABASE_URL/SUPABASE_KEY not set, using the in-memory document store")
    return MemoryDocumentStore()


@lru_cache()
def get_presence() -> PresenceRegistry:
    return PresenceRegistry()


@lru_cache()
def get_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    return NotificationDispatcher(
        get_store(),
        get_presence(),
        push=build_push_capability(settings),
        settings=settings,
    )


@lru_cache()
def get_user_directory() -> UserDirectory:
    return UserDirectory(get_store())


@lru_cache()
def get_offer_service() -> OfferService:
    return OfferService(get_store(), get_dispatcher(), get_user_directory(), get_settings())


@lru_cache()
def get_conversation_service() -> ConversationService:
    return ConversationService(get_store(), get_dispatcher(), get_user_directory(), get_settings())


@lru_cache()
def get_notification_inbox() -> NotificationInbox:
    return NotificationInbox(get_store())
