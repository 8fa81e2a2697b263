"""Client session -- one user's auth state and pipeline behind a single object.

Control flow per session:
1. start(): resolve the current user (cache first, server second).
2. guard(): authorize route rendering for that user.
3. refresh_pipeline(): fetch deals into the session's collection.
4. stats: re-derived from the collection on every read.
5. advance()/change_stage()/close_won()/close_lost(): server-confirmed
   stage changes that mutate the collection; the next stats read sees them.

One session per event loop. The collection has exactly one writer.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

import httpx
import structlog

from src.salesboost.auth.cache import PersistentAuthCache
from src.salesboost.auth.guard import RouteDecision, can_edit_deal, guard_route
from src.salesboost.auth.reconciler import AuthReconciler
from src.salesboost.auth.schemas import User
from src.salesboost.auth.service import AuthService, HttpAuthService
from src.salesboost.auth.storage import JsonFileStorage, KeyValueStorage
from src.salesboost.config import Settings, get_settings
from src.salesboost.deals.aggregator import PipelineAggregator
from src.salesboost.deals.collection import DealCollection
from src.salesboost.deals.schemas import Deal, DealStage, PipelineStats
from src.salesboost.deals.stage_machine import DealStageMachine
from src.salesboost.deals.store import DealStore, DealStoreError, HttpDealStore

logger = structlog.get_logger(__name__)

COOKIE_STORAGE_KEY = "salesSpark_session_cookies"


class PermissionDeniedError(PermissionError):
    """Raised when the current user may not modify a deal."""


class SalesSession:
    """Facade over one user's client-side state.

    Args:
        cache: Persistent auth cache.
        auth_service: Server-side auth collaborator.
        deal_store: Server-side deal collaborator.
        verify_delay: Seconds before the post-login session check.
    """

    def __init__(
        self,
        cache: PersistentAuthCache,
        auth_service: AuthService,
        deal_store: DealStore,
        *,
        verify_delay: float = 0.1,
    ) -> None:
        self.auth = AuthReconciler(cache, auth_service, verify_delay=verify_delay)
        self.deals = DealCollection()
        self.stages = DealStageMachine(self.deals, deal_store)
        self._store = deal_store
        self._aggregator = PipelineAggregator()
        self._loading = False
        self._client: httpx.AsyncClient | None = None
        self._cookie_storage: KeyValueStorage | None = None
        self.pipeline_error: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SalesSession:
        """Build a session talking HTTP to API_BASE_URL.

        Auth and deal calls share one httpx client so the session cookie
        set at login accompanies pipeline requests.
        """
        settings = settings or get_settings()
        client = httpx.AsyncClient(
            base_url=settings.API_BASE_URL,
            timeout=settings.HTTP_TIMEOUT,
            headers={"Content-Type": "application/json"},
        )
        storage = JsonFileStorage(settings.AUTH_CACHE_PATH)
        cache = PersistentAuthCache(
            storage,
            key=settings.AUTH_CACHE_KEY,
            max_age_ms=settings.AUTH_CACHE_MAX_AGE_MS,
        )
        session = cls(
            cache,
            HttpAuthService(client=client),
            HttpDealStore(client=client),
            verify_delay=settings.SESSION_VERIFY_DELAY,
        )
        session._client = client
        session._cookie_storage = storage
        session._restore_cookies()
        return session

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def start(self) -> User | None:
        """Resolve the user and, when authenticated, load the pipeline."""
        self._loading = True
        try:
            user = await self.auth.resolve()
        finally:
            self._loading = False
        if user is not None:
            await self._load_pipeline()
        return user

    async def _load_pipeline(self) -> None:
        try:
            await self.refresh_pipeline()
        except DealStoreError:
            # Recorded in pipeline_error; the last known pipeline still renders.
            return

    async def aclose(self) -> None:
        await self.auth.aclose()
        await self._store.aclose()
        if self._client is not None:
            self._save_cookies()
            await self._client.aclose()

    def _restore_cookies(self) -> None:
        """Reload the server session cookie saved by a previous process."""
        if self._client is None or self._cookie_storage is None:
            return
        try:
            raw = self._cookie_storage.get(COOKIE_STORAGE_KEY)
            cookies = json.loads(raw) if raw else {}
        except (OSError, ValueError) as exc:
            logger.warning("session.cookie_restore_failed", error=str(exc))
            return
        if isinstance(cookies, dict):
            self._client.cookies.update({str(k): str(v) for k, v in cookies.items()})

    def _save_cookies(self) -> None:
        if self._client is None or self._cookie_storage is None:
            return
        try:
            if self.auth.user is None:
                self._cookie_storage.delete(COOKIE_STORAGE_KEY)
            else:
                jar = {cookie.name: cookie.value for cookie in self._client.cookies.jar}
                self._cookie_storage.set(COOKIE_STORAGE_KEY, json.dumps(jar))
        except (OSError, ValueError) as exc:
            logger.warning("session.cookie_save_failed", error=str(exc))

    # ── Auth ────────────────────────────────────────────────────────────────

    @property
    def user(self) -> User | None:
        return self.auth.user

    async def login(self, username: str, password: str) -> User:
        user = await self.auth.login(username, password)
        await self._load_pipeline()
        return user

    async def logout(self) -> None:
        await self.auth.logout()
        self.deals.replace_all([])

    def guard(self, allowed_roles: Iterable[str] | None = None) -> RouteDecision:
        return guard_route(self.auth.user, allowed_roles, loading=self._loading)

    # ── Pipeline ────────────────────────────────────────────────────────────

    async def refresh_pipeline(self) -> list[Deal]:
        """Replace the local collection with the server's pipeline.

        On failure the previous collection is kept and the message is
        recorded in pipeline_error.
        """
        try:
            deals = await self._store.list()
        except DealStoreError as exc:
            self.pipeline_error = str(exc)
            logger.warning("pipeline.refresh_failed", error=self.pipeline_error)
            raise
        self.deals.replace_all(deals)
        self.pipeline_error = None
        logger.info("pipeline.refreshed", count=len(deals))
        return deals

    @property
    def stats(self) -> PipelineStats:
        return self._aggregator.compute(self.deals)

    async def change_stage(self, deal_id: int, stage: str | DealStage) -> Deal:
        self._check_can_edit(deal_id)
        return await self.stages.transition(deal_id, stage)

    async def advance(self, deal_id: int) -> Deal:
        self._check_can_edit(deal_id)
        return await self.stages.advance(deal_id)

    async def close_won(self, deal_id: int) -> Deal:
        self._check_can_edit(deal_id)
        return await self.stages.close_won(deal_id)

    async def close_lost(self, deal_id: int) -> Deal:
        self._check_can_edit(deal_id)
        return await self.stages.close_lost(deal_id)

    def _check_can_edit(self, deal_id: int) -> None:
        deal = self.deals.get(deal_id)
        if not can_edit_deal(self.auth.user, deal):
            raise PermissionDeniedError(f"You do not have permission to modify deal {deal_id}")
