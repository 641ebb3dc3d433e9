"""
Instagram Reels Scraper Runner

Runs one collection session for one persona:
1. Browser Lifecycle (Playwright + fingerprint + cookies)
2. Reels session (interception, DOM fallback, navigation)
3. Persistence (SQLite, optional CSV export)
"""

import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from IG_Reels_Scraper.src.config import EngagementConfig, SessionConfig
from IG_Reels_Scraper.src.errors import AccountBlockedError, ConfigError
from IG_Reels_Scraper.src.record_store_db import RecordStore
from IG_Reels_Scraper.src.scraper_functions.browser_session import BrowserSession
from IG_Reels_Scraper.src.scraper_functions.engagement import EngagementPolicy
from IG_Reels_Scraper.src.scraper_functions.scrape_loop import ReelsScrapeSession
from IG_Reels_Scraper.src.scraper_functions.screenshot import ScreenshotTaker
from IG_Reels_Scraper.src.scraper_functions.session_health import SessionHealthMonitor

# ============================================================================
# CONFIGURATION
# ============================================================================

PROGRESS_DB_DIR = "progress_tracking/"
DEFAULT_DB_FILE = PROGRESS_DB_DIR + "reels.db"
DEFAULT_TARGET = 20
DEFAULT_COOKIES_FILE = "instagram_cookies.json"
DEFAULT_FINGERPRINT_FILE = "browser_fingerprint.json"
SLOW_MO = 50
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def setup_logging(run_name: str, log_dir: str = "logs/", verbose: bool = False) -> logging.Logger:
    """Send every IGRS logger to a per-run DEBUG file and to stdout."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / f"{run_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    # Replaces the basicConfig handler installed on import
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    outputs = [
        (logging.FileHandler(log_file, encoding='utf-8'), logging.DEBUG),
        (logging.StreamHandler(sys.stdout), logging.DEBUG if verbose else logging.INFO),
    ]
    for handler, level in outputs:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    runner_logger = logging.getLogger('IGRS.Runner')
    runner_logger.debug(f"Writing log to {log_file}")
    return runner_logger


def load_persona(path: Optional[str]) -> Dict[str, Any]:
    """Persona files are JSON with an "id" and an optional "engagement" section."""
    if not path:
        return {"id": "default"}
    with open(path, 'r', encoding='utf-8') as f:
        persona = json.load(f)
    if not isinstance(persona, dict):
        raise ConfigError(f"Persona file {path} must contain a JSON object")
    persona.setdefault("id", Path(path).stem)
    return persona


# ============================================================================
# MAIN SCRAPING LOGIC
# ============================================================================

async def scrape_reels(
    target: int,
    persona: Dict[str, Any],
    engagement_config: Optional[EngagementConfig] = None,
    db_file: str = DEFAULT_DB_FILE,
    headless: bool = True,
    proxy: Optional[str] = None,
    cookies_file: Optional[str] = DEFAULT_COOKIES_FILE,
    fingerprint_file: Optional[str] = DEFAULT_FINGERPRINT_FILE,
    export_csv: Optional[str] = None,
    verbose: bool = False,
) -> int:
    persona_id = str(persona["id"])
    logger = setup_logging(f"reels_{persona_id}", verbose=verbose)

    logger.info("=" * 70)
    logger.info("INSTAGRAM REELS SCRAPER")
    logger.info(f"Persona: {persona_id}")
    logger.info(f"Target reels: {target}")
    logger.info("=" * 70)

    engagement_config = engagement_config or EngagementConfig.from_persona(persona)
    session_config = SessionConfig()

    with RecordStore(db_file=db_file, persona_id=persona_id) as store:
        logger.info(f"Already stored for this persona: {store.count_records()}")

        async with BrowserSession(
            headless=headless,
            slow_mo=SLOW_MO,
            proxy=proxy,
            fingerprint_file=fingerprint_file,
            cookies_file=cookies_file,
        ) as browser:
            page = browser.page
            session = ReelsScrapeSession(
                page,
                store,
                health=SessionHealthMonitor(page),
                engagement=EngagementPolicy(engagement_config),
                screenshots=ScreenshotTaker(
                    page, persona_id, session_config.screenshot_dir, session_config.screenshot_timeout
                ),
                config=session_config,
                persona_id=persona_id,
            )
            try:
                result = await session.run(target)
            except AccountBlockedError as e:
                logger.error(f"❌ {e}")
                if e.result is not None:
                    logger.error(f"   Collected before block: {e.result.stats.collected}")
                return EXIT_BLOCKED

        logger.info(f"\n✅ Session complete: {result.stop_reason.value}")
        logger.info(f"   - Collected: {result.stats.collected}/{target}")
        logger.info(f"   - From interception: {result.stats.from_cache + result.stats.drained}")
        logger.info(f"   - From page: {result.stats.from_dom}")
        logger.info(f"   - Navigation failures: {result.navigation.cumulative_failures}")

        if export_csv:
            store.export_csv(export_csv)

    return EXIT_OK


# ============================================================================
# MAIN
# ============================================================================

def main() -> int:
    import argparse
    parser = argparse.ArgumentParser(description="Instagram Reels Scraper")

    parser.add_argument("--target", type=int, default=DEFAULT_TARGET, help="Number of new reels to collect")
    parser.add_argument("--persona", type=str, default=None, help="Path to persona JSON")
    parser.add_argument("--db", type=str, default=DEFAULT_DB_FILE)
    parser.add_argument("--export-csv", type=str, default=None, help="Write this persona's records to CSV")

    parser.add_argument("--headless", action="store_true")
    parser.add_argument("--proxy", type=str, default=None)
    parser.add_argument("--cookies", type=str, default=DEFAULT_COOKIES_FILE)
    parser.add_argument("--fingerprint", type=str, default=DEFAULT_FINGERPRINT_FILE)
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args()

    if args.target < 1:
        print("Error: --target must be at least 1")
        return EXIT_ERROR

    try:
        persona = load_persona(args.persona)
        engagement_config = EngagementConfig.from_persona(persona)
    except (OSError, json.JSONDecodeError, ConfigError) as e:
        print(f"Error: cannot load persona: {e}")
        return EXIT_ERROR

    return asyncio.run(scrape_reels(
        target=args.target,
        persona=persona,
        engagement_config=engagement_config,
        db_file=args.db,
        headless=args.headless,
        proxy=args.proxy,
        cookies_file=args.cookies,
        fingerprint_file=args.fingerprint,
        export_csv=args.export_csv,
        verbose=args.verbose,
    ))


if __name__ == "__main__":
    sys.exit(main())
