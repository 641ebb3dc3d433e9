import json
import logging
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import run_reels_scraper


class SetupLoggingTest(unittest.TestCase):

    def setUp(self):
        self.root = logging.getLogger()
        self.saved_handlers = list(self.root.handlers)
        self.saved_level = self.root.level
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        for handler in list(self.root.handlers):
            self.root.removeHandler(handler)
            handler.close()
        for handler in self.saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self.saved_level)
        self.tmp.cleanup()

    def test_file_and_console_handlers(self):
        logger = run_reels_scraper.setup_logging("reels_p1", log_dir=self.tmp.name)
        self.assertEqual(logger.name, "IGRS.Runner")
        self.assertEqual(len(self.root.handlers), 2)

        file_handler, console_handler = self.root.handlers
        self.assertIsInstance(file_handler, logging.FileHandler)
        self.assertEqual(file_handler.level, logging.DEBUG)
        self.assertEqual(console_handler.level, logging.INFO)

        logging.getLogger("IGRS.Session").debug("only in the file")
        file_handler.flush()
        log_files = list(Path(self.tmp.name).glob("reels_p1_*.log"))
        self.assertEqual(len(log_files), 1)
        self.assertIn("only in the file", log_files[0].read_text(encoding="utf-8"))

    def test_verbose_console(self):
        run_reels_scraper.setup_logging("reels_p1", log_dir=self.tmp.name, verbose=True)
        self.assertEqual(self.root.handlers[1].level, logging.DEBUG)


class PersonaLoadingTest(unittest.TestCase):

    def test_default_persona(self):
        self.assertEqual(run_reels_scraper.load_persona(None), {"id": "default"})

    def test_id_defaults_to_file_name(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "night_owl.json"
            path.write_text(json.dumps({"engagement": {}}))
            self.assertEqual(run_reels_scraper.load_persona(str(path))["id"], "night_owl")

    def test_invalid_engagement_exits_with_error(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "broken.json"
            path.write_text(json.dumps({"engagement": {"likes": {"delay_seconds": 5}}}))
            argv = ["ig-reels-scraper", "--persona", str(path)]
            with mock.patch.object(sys, "argv", argv), \
                    mock.patch.object(run_reels_scraper, "scrape_reels") as scrape, \
                    mock.patch("builtins.print") as printed:
                self.assertEqual(run_reels_scraper.main(), run_reels_scraper.EXIT_ERROR)
            scrape.assert_not_called()
            self.assertIn("delay_seconds", printed.call_args[0][0])


if __name__ == '__main__':
    unittest.main()
