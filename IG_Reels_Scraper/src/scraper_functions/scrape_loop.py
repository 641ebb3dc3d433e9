"""
Scrape loop orchestrator.

One ReelsScrapeSession drives one browser page through the reels feed until it
has persisted `target` new records or hits a terminal condition. Per item:

  1. make sure the page shows a reel, recovering if it does not
  2. read the item id from the location
  3. give the interception bridge a short, bounded window to cache it
  4. take a best-effort screenshot
  5. resolve the record from the cache, falling back to the rendered page
  6. drain a few other cached records that were captured ahead of the loop
  7. persist the current record
  8. engage and dwell
  9. advance, with backoff retries on failure

An account block raises AccountBlockedError with the partial SessionResult
attached. Every other terminal condition is returned as a SessionResult whose
stop_reason names it.
"""

import asyncio
import logging
import random
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from playwright.async_api import Error as PlaywrightError

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.config import NavigationConfig, SessionConfig
from IG_Reels_Scraper.src.errors import AccountBlockedError, StorageError
from IG_Reels_Scraper.src.models import CanonicalRecord, NavigationState, SessionStatus
from IG_Reels_Scraper.src.scraper_functions.dedup_cache import DedupCache
from IG_Reels_Scraper.src.scraper_functions.dom_extractor import DOMExtractor
from IG_Reels_Scraper.src.scraper_functions.interception_bridge import InterceptionBridge
from IG_Reels_Scraper.src.scraper_functions.record_merger import merge
from IG_Reels_Scraper.src.scraper_functions.reel_navigator import ReelNavigator

logger = logging.getLogger('IGRS.Session')

ENGAGEMENT_KINDS = ('likes',)


class StopReason(Enum):
    TARGET_REACHED = "target_reached"
    NAVIGATION_EXHAUSTED = "navigation_exhausted"
    RECOVERY_EXHAUSTED = "recovery_exhausted"
    EXTRACTION_EXHAUSTED = "extraction_exhausted"
    ACCOUNT_BLOCKED = "account_blocked"
    CANCELLED = "cancelled"


@dataclass
class SessionStats:
    persona_id: str
    target: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    status: Optional[str] = None
    stop_reason: Optional[str] = None
    iterations: int = 0
    collected: int = 0
    from_cache: int = 0
    from_dom: int = 0
    drained: int = 0
    storage_duplicates: int = 0
    storage_errors: int = 0
    extraction_misses: int = 0
    recoveries: int = 0
    prompts_dismissed: int = 0
    screenshots: int = 0
    screenshot_failures: int = 0
    engagements: int = 0
    navigation_consecutive_failures: int = 0
    navigation_cumulative_failures: int = 0
    bridge: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "finished_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class SessionResult:
    status: SessionStatus
    stop_reason: StopReason
    records: List[CanonicalRecord]
    stats: SessionStats
    navigation: NavigationState


class ReelsScrapeSession:
    """Runs one bounded collection session on a single page."""

    def __init__(
        self,
        page,
        storage,
        health=None,
        engagement=None,
        screenshots=None,
        config: Optional[SessionConfig] = None,
        nav_config: Optional[NavigationConfig] = None,
        navigator: Optional[ReelNavigator] = None,
        persona_id: str = "default",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.page = page
        self.storage = storage
        self.health = health
        self.engagement = engagement
        self.screenshots = screenshots
        self.config = config or SessionConfig()
        self.persona_id = persona_id
        self._sleep = sleep
        self._rng = rng or random.Random()

        self.cache = DedupCache()
        self.bridge = InterceptionBridge(page, self.cache, storage, self.config.channel_size)
        self.navigator = navigator or ReelNavigator(page, nav_config, sleep=sleep, rng=self._rng)
        self.extractor = DOMExtractor(page)

        self.status = SessionStatus.DONE
        self.records: List[CanonicalRecord] = []
        self.stats = SessionStats(persona_id=persona_id)
        self._handled_ids: Set[str] = set()
        self._misses = 0
        self._recovery_attempts = 0
        self._last_prompt_check: Optional[int] = None
        self._last_item_id: Optional[str] = None

    # ========================================================================
    # SESSION
    # ========================================================================

    def _reset(self, target: int):
        self.cache.clear()
        self.bridge.reset()
        self.navigator.reset()
        self.records = []
        self.stats = SessionStats(persona_id=self.persona_id, target=target, started_at=datetime.now(timezone.utc))
        self._handled_ids = set()
        self._misses = 0
        self._recovery_attempts = 0
        self._last_prompt_check = None
        self._last_item_id = None

    def _result(self, stop_reason: StopReason) -> SessionResult:
        state = self.navigator.state
        self.stats.status = self.status.value
        self.stats.stop_reason = stop_reason.value
        self.stats.navigation_consecutive_failures = state.consecutive_failures
        self.stats.navigation_cumulative_failures = state.cumulative_failures
        self.stats.bridge = dict(self.bridge.stats)
        return SessionResult(
            status=self.status,
            stop_reason=stop_reason,
            records=list(self.records),
            stats=self.stats,
            navigation=replace(state),
        )

    async def run(self, target: int) -> SessionResult:
        if target < 1:
            raise ValueError("target must be >= 1")

        self._reset(target)
        self.status = SessionStatus.RUNNING
        logger.info(f"Starting reels session for persona {self.persona_id}: target={target}")

        await self.bridge.install()
        self.bridge.start()
        stop_reason = StopReason.CANCELLED
        try:
            stop_reason = await self._loop(target)
            self.status = SessionStatus.DONE
            return self._result(stop_reason)
        except AccountBlockedError:
            stop_reason = StopReason.ACCOUNT_BLOCKED
            raise
        finally:
            await self.bridge.stop()
            self.stats.finished_at = datetime.now(timezone.utc)
            self._save_session(stop_reason)
            logger.info(
                f"Session finished: {self.stats.collected}/{target} collected, "
                f"status={self.status.value}, reason={stop_reason.value}"
            )

    def _save_session(self, stop_reason: StopReason):
        self._result(stop_reason)
        try:
            self.storage.save_session(self.stats.to_dict())
        except Exception as e:
            logger.error(f"Failed to save session stats: {e}")

    async def _loop(self, target: int) -> StopReason:
        while self.stats.collected < target:
            if not self.navigator.is_on_item():
                if not await self._recover():
                    return StopReason.RECOVERY_EXHAUSTED
                continue

            self.status = SessionStatus.RUNNING
            self._recovery_attempts = 0
            self.stats.iterations += 1
            await self._pause(*self.config.item_load_range)
            await self._check_prompt()

            item_id = self.navigator.current_item_id()
            if item_id is None:
                continue

            stuck = item_id == self._last_item_id
            self._last_item_id = item_id
            if item_id in self._handled_ids:
                logger.debug(f"Reel {item_id} already handled this session, moving on")
                if stuck:
                    self._count_miss(f"Still on reel {item_id} after navigating")
            else:
                await self._await_interception(item_id)
                screenshot_ref = await self._take_screenshot(item_id)
                record = await self._resolve(item_id)
                await self._drain_cached(item_id, target, reserve=1 if record is not None else 0)

                if record is None:
                    self._count_miss(f"No data for reel {item_id}")
                elif self._persist(record, screenshot_ref):
                    await self._engage_and_dwell()

            if self._misses >= self.config.max_consecutive_misses:
                logger.error("Too many consecutive misses, ending session")
                return StopReason.EXTRACTION_EXHAUSTED
            if self.stats.collected >= target:
                break
            if not await self._advance():
                return StopReason.NAVIGATION_EXHAUSTED

        logger.info(f"✓ Target reached: {self.stats.collected} reels")
        return StopReason.TARGET_REACHED

    def _count_miss(self, message: str):
        """Record an item that produced no progress. The loop ends once max_consecutive_misses is hit."""
        self._misses += 1
        self.stats.extraction_misses += 1
        logger.warning(f"{message} ({self._misses}/{self.config.max_consecutive_misses})")

    # ========================================================================
    # STEPS
    # ========================================================================

    async def _recover(self) -> bool:
        self.status = SessionStatus.RECOVERING
        await self._check_fatal()
        if await self._dismiss_prompt():
            await self._pause(*self.config.recovery_settle_range)
            if self.navigator.is_on_item():
                return True

        if self._recovery_attempts >= self.config.max_recovery_attempts:
            logger.error(f"Could not get back onto a reel after {self._recovery_attempts} attempts")
            return False
        self._recovery_attempts += 1
        self.stats.recoveries += 1
        logger.warning(f"Not on a reel, recovering ({self._recovery_attempts}/{self.config.max_recovery_attempts})")

        try:
            await self.navigator.open_feed()
        except PlaywrightError as e:
            logger.warning(f"Recovery navigation failed: {e}")
        await self._pause(*self.config.recovery_settle_range)
        await self._check_fatal()
        return True

    async def _check_fatal(self):
        if self.health is None:
            return
        if await self.health.is_account_blocked():
            self.status = SessionStatus.BLOCKED
            raise AccountBlockedError(
                f"Account for persona {self.persona_id} is blocked",
                result=self._result(StopReason.ACCOUNT_BLOCKED),
            )

    async def _dismiss_prompt(self) -> bool:
        if self.health is None:
            return False
        handled = await self.health.is_transient_prompt()
        if handled:
            self.stats.prompts_dismissed += 1
        return handled

    async def _check_prompt(self):
        collected = self.stats.collected
        if collected % self.config.prompt_check_every != 0 or collected == self._last_prompt_check:
            return
        self._last_prompt_check = collected
        if await self._dismiss_prompt():
            await self._pause(1.0, 2.0)

    async def _await_interception(self, item_id: str):
        if self.cache.has(item_id) or self.bridge.degraded:
            return
        for interval in self.config.arrival_intervals():
            await self._sleep(interval)
            if self.cache.has(item_id):
                logger.debug(f"Intercepted data for {item_id} arrived")
                return
        logger.debug(f"No intercepted data for {item_id}, will use the rendered page")

    async def _take_screenshot(self, item_id: str) -> Optional[str]:
        if self.screenshots is None:
            return None
        await self._pause(*self.config.screenshot_delay_range)
        try:
            ref = await asyncio.wait_for(self.screenshots.take(item_id), timeout=self.config.screenshot_timeout)
        except (asyncio.TimeoutError, PlaywrightError, OSError) as e:
            logger.debug(f"Screenshot for {item_id} failed: {e}")
            ref = None
        if ref:
            self.stats.screenshots += 1
        else:
            self.stats.screenshot_failures += 1
        return ref

    async def _resolve(self, item_id: str) -> Optional[CanonicalRecord]:
        record = self.cache.get(item_id)
        if record is not None:
            self.stats.from_cache += 1
            return record

        partial = await self.extractor.extract()
        record = merge(None, partial)
        if record is None:
            return None
        if not self.cache.add_if_absent(record):
            # Interception won the race; its record stands
            record = self.cache.get(record.id)
        else:
            self.stats.from_dom += 1
            logger.debug(f"Resolved {record.id} from the rendered page")
        return record

    async def _drain_cached(self, current_id: str, target: int, reserve: int):
        budget = min(self.config.drain_batch_size, target - self.stats.collected - reserve)
        if budget <= 0:
            return
        pending = [
            r for r in self.cache.all()
            if r.id != current_id and r.id not in self._handled_ids
        ]
        for record in pending[:budget]:
            if self._persist(record):
                self.stats.drained += 1
                logger.info(f"✓ Drained cached reel {record.id}")

    def _persist(self, record: CanonicalRecord, screenshot_ref: Optional[str] = None) -> bool:
        """Save one record. Only a new row counts as progress."""
        if record.id in self._handled_ids:
            return False
        to_save = replace(record, screenshot_ref=screenshot_ref) if screenshot_ref else record
        try:
            saved = self.storage.save_record(to_save)
        except StorageError as e:
            self.stats.storage_errors += 1
            self._count_miss(f"Could not persist {record.id}: {e}")
            return False

        self._handled_ids.add(record.id)
        if not saved:
            self.stats.storage_duplicates += 1
            logger.debug(f"Reel {record.id} already stored, skipping")
            return False

        self.records.append(to_save)
        self.stats.collected += 1
        self._misses = 0
        logger.info(
            f"✓ Saved reel {to_save.id} by @{to_save.author_handle or '?'} "
            f"[{to_save.provenance.value}] ({self.stats.collected}/{self.stats.target})"
        )
        return True

    async def _engage_and_dwell(self):
        if self.engagement is None:
            return
        for kind in ENGAGEMENT_KINDS:
            if not self.engagement.should_engage(kind):
                continue
            try:
                if await self.engagement.perform(self.page, kind):
                    self.stats.engagements += 1
            except PlaywrightError as e:
                logger.debug(f"Engagement '{kind}' failed: {e}")
        dwell = self.engagement.dwell_duration() / 1000
        logger.debug(f"Watching for {dwell:.1f}s")
        await self._sleep(dwell)

    async def _advance(self) -> bool:
        moved = await self.navigator.advance()
        while not moved and self.navigator.should_retry():
            delay = self.navigator.next_backoff()
            logger.warning(
                f"Navigation failed ({self.navigator.state.consecutive_failures} in a row), "
                f"retrying in {delay:.1f}s"
            )
            await self._sleep(delay)
            moved = await self.navigator.advance()

        if moved:
            await self._pause(*self.config.settle_range)
            return True

        await self._check_fatal()
        state = self.navigator.state
        logger.error(
            f"Navigation exhausted (consecutive={state.consecutive_failures}, "
            f"cumulative={state.cumulative_failures}), ending session"
        )
        return False

    async def _pause(self, low: float, high: float):
        await self._sleep(self._rng.uniform(low, high))
