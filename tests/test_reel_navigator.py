import random
import unittest

from IG_Reels_Scraper.src.config import NavigationConfig
from IG_Reels_Scraper.src.models import NavigationState
from IG_Reels_Scraper.src.scraper_functions.reel_navigator import (
    FIRST_REEL_SELECTOR,
    MEDIA_READY_SELECTOR,
    NavigationStrategy,
    ReelNavigator,
    click_next_button,
    compute_backoff,
    default_strategies,
    is_exhausted,
    key_press,
    record_outcome,
    swipe_media,
)

from fakes import FakeElement, FakePage, RecordingSleep, REELS, fast_sleep, reel_url

FAST = NavigationConfig(
    verify_timeout=1.5, last_resort_verify_timeout=2.0, poll_interval=0.25, heuristic_min_wait=1.0,
)


def navigator(page, strategies=None, config=FAST, sleep=fast_sleep):
    return ReelNavigator(page, config, strategies=strategies, sleep=sleep, rng=random.Random(7))


class FailurePolicyTest(unittest.TestCase):

    def test_backoff_is_monotonic_and_capped(self):
        config = NavigationConfig()
        delays = [compute_backoff(n, config) for n in (1, 2, 3, 4, 5)]
        self.assertEqual(delays[:3], [2.0, 4.0, 8.0])
        self.assertEqual(delays, sorted(delays))
        self.assertEqual(max(delays), config.backoff_max)

    def test_record_outcome(self):
        state = NavigationState()
        record_outcome(state, False)
        record_outcome(state, False)
        self.assertEqual((state.consecutive_failures, state.cumulative_failures), (2, 2))
        record_outcome(state, True)
        self.assertEqual((state.consecutive_failures, state.cumulative_failures), (0, 2))

    def test_exhaustion(self):
        config = NavigationConfig(max_consecutive_failures=3, max_cumulative_failures=5)
        self.assertFalse(is_exhausted(NavigationState(consecutive_failures=2, cumulative_failures=4), config))
        self.assertTrue(is_exhausted(NavigationState(consecutive_failures=3, cumulative_failures=3), config))
        self.assertTrue(is_exhausted(NavigationState(consecutive_failures=1, cumulative_failures=5), config))

    def test_default_strategy_order(self):
        names = [s.name for s in default_strategies(NavigationConfig())]
        self.assertEqual(names, ["ArrowDown", "ArrowRight", "next button", "swipe", "PageDown"])
        self.assertEqual(default_strategies(NavigationConfig())[-1].verify_timeout, 10.0)


class AdvanceTest(unittest.IsolatedAsyncioTestCase):

    async def test_failed_strategy_falls_through_to_next(self):
        page = FakePage(reel_url("A"))
        page.key_script = [None, reel_url("B")]
        nav = navigator(page, [
            NavigationStrategy("ArrowDown", key_press("ArrowDown")),
            NavigationStrategy("ArrowRight", key_press("ArrowRight")),
        ])
        self.assertTrue(await nav.advance())
        self.assertEqual(page.keyboard.pressed, ["ArrowDown", "ArrowRight"])
        self.assertEqual(nav.state.consecutive_failures, 0)
        self.assertEqual(nav.state.current_item_id, "B")

    async def test_all_strategies_failing_adds_exactly_one_failure(self):
        page = FakePage(reel_url("A"))
        nav = navigator(page, [
            NavigationStrategy("ArrowDown", key_press("ArrowDown"), attempts=2),
            NavigationStrategy("PageDown", key_press("PageDown")),
        ])
        nav.state.consecutive_failures = 1
        nav.state.cumulative_failures = 1
        self.assertFalse(await nav.advance())
        self.assertEqual(page.keyboard.pressed, ["ArrowDown", "ArrowDown", "PageDown"])
        self.assertEqual(nav.state.consecutive_failures, 2)
        self.assertEqual(nav.state.cumulative_failures, 2)

    async def test_verification_is_bounded(self):
        page = FakePage(reel_url("A"))
        sleep = RecordingSleep()
        nav = navigator(page, sleep=sleep)
        self.assertFalse(await nav.verify_transition("A", timeout=1.5))
        self.assertEqual(len(sleep.calls), 6)

    async def test_media_ready_heuristic(self):
        page = FakePage(reel_url("A"))
        page.selectors[MEDIA_READY_SELECTOR] = FakeElement()
        nav = navigator(page)
        self.assertTrue(await nav.verify_transition("A", timeout=1.5))

    async def test_strategy_errors_count_as_failure(self):
        async def broken(page):
            raise RuntimeError("element detached")

        page = FakePage(reel_url("A"))
        nav = navigator(page, [NavigationStrategy("broken", broken)])
        self.assertFalse(await nav.advance())
        self.assertEqual(nav.state.consecutive_failures, 1)

    async def test_no_item_id_is_a_failure(self):
        page = FakePage(REELS)
        nav = navigator(page, [NavigationStrategy("ArrowDown", key_press("ArrowDown"))])
        self.assertFalse(await nav.advance())
        self.assertEqual(page.keyboard.pressed, [])
        self.assertEqual(nav.state.cumulative_failures, 1)

    async def test_retry_policy(self):
        nav = navigator(FakePage(reel_url("A")))
        self.assertFalse(nav.should_retry())
        nav.state.consecutive_failures = 1
        nav.state.cumulative_failures = 1
        self.assertTrue(nav.should_retry())
        backoff = nav.next_backoff()
        self.assertGreaterEqual(backoff, FAST.backoff_base)
        self.assertLessEqual(backoff, FAST.backoff_base + FAST.backoff_jitter)
        nav.state.consecutive_failures = FAST.max_consecutive_failures
        self.assertFalse(nav.should_retry())
        self.assertTrue(nav.is_exhausted())


class StrategyTest(unittest.IsolatedAsyncioTestCase):

    async def test_click_next_button(self):
        page = FakePage(reel_url("A"))
        self.assertFalse(await click_next_button()(page))

        def go():
            page.url = reel_url("B")

        button = FakeElement(on_click=go)
        page.selectors['button[aria-label*="Next"]'] = button
        self.assertTrue(await click_next_button()(page))
        self.assertEqual(button.clicks, 1)
        self.assertEqual(page.url, reel_url("B"))

    async def test_swipe_needs_a_video_box(self):
        page = FakePage(reel_url("A"))
        self.assertFalse(await swipe_media(page))
        page.selectors['video'] = FakeElement(box={"x": 0, "y": 0, "width": 400, "height": 800})
        self.assertTrue(await swipe_media(page))
        self.assertEqual(page.mouse.moves, 2)

    async def test_open_feed_clicks_first_reel(self):
        page = FakePage("about:blank")

        def open_reel():
            page.url = reel_url("First")

        page.selectors[FIRST_REEL_SELECTOR] = FakeElement(on_click=open_reel)
        nav = navigator(page)
        self.assertTrue(await nav.open_feed())
        self.assertEqual(page.goto_calls, [FAST.feed_url])
        self.assertEqual(nav.current_item_id(), "First")


if __name__ == '__main__':
    unittest.main()
