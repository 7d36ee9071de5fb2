from __future__ import annotations

import csv
import tempfile
from pathlib import Path
import unittest

from typer.testing import CliRunner

from cardcraft import config
from cardcraft.main import app
from cardcraft.models import reset_engine
from cardcraft.pipeline.ingest import get_project


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.out_dir = self.root / "out"
        config.set_out_dir(self.out_dir)
        reset_engine()
        self.runner = CliRunner()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_templates_lists_every_template(self) -> None:
        result = self.runner.invoke(app, ["templates"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("classic", result.output)
        self.assertIn("minimal", result.output)

    def test_layout_reports_grid(self) -> None:
        result = self.runner.invoke(app, ["layout", "-n", "2"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("grid: 2 x 1", result.output)

    def test_layout_rejects_unsupported_density(self) -> None:
        result = self.runner.invoke(app, ["layout", "-n", "3"])
        self.assertNotEqual(result.exit_code, 0)

    def test_ingest_creates_project(self) -> None:
        csv_path = self.root / "guests.csv"
        with csv_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["Name", "Gift"])
            writer.writerow(["Ann", "Vase"])

        result = self.runner.invoke(
            app,
            ["ingest", "--csv", str(csv_path), "--title", "Lee Wedding", "--out", str(self.out_dir)],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("lee-wedding", result.output)
        self.assertEqual(get_project("lee-wedding").cards_per_page, 4)

    def _guest_csv(self) -> Path:
        csv_path = self.root / "guests.csv"
        with csv_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(["Name", "Gift", "Message"])
            writer.writerow(["Ann", "Vase", "Hi Ann"])
            writer.writerow(["Bob", "Bowl", "Hi Bob"])
        return csv_path

    def test_ingest_reports_bad_options_without_traceback(self) -> None:
        for options in (["--messages", "telepathy"], ["--messages", "ai", "--tone", "sarcastic"]):
            result = self.runner.invoke(
                app,
                ["ingest", "--csv", str(self._guest_csv()), "--out", str(self.out_dir), *options],
            )
            self.assertEqual(result.exit_code, 1, result.output)
            self.assertIsInstance(result.exception, SystemExit)
            self.assertIn("Error:", result.output)

    def test_edit_changes_one_card(self) -> None:
        self.runner.invoke(app, ["ingest", "--csv", str(self._guest_csv()), "--title", "Edit", "--out", str(self.out_dir)])

        result = self.runner.invoke(
            app,
            ["edit", "--project", "edit", "--card", "2", "--message", "Thanks for the bowl!", "--out", str(self.out_dir)],
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Bob", result.output)

        listing = self.runner.invoke(app, ["cards", "--project", "edit", "--out", str(self.out_dir)])
        self.assertIn("1. Ann (Vase): Hi Ann", listing.output)
        self.assertIn("2. Bob (Bowl): Thanks for the bowl!", listing.output)

    def test_edit_rejects_missing_card(self) -> None:
        self.runner.invoke(app, ["ingest", "--csv", str(self._guest_csv()), "--title", "Edit", "--out", str(self.out_dir)])
        result = self.runner.invoke(
            app,
            ["edit", "--project", "edit", "--card", "9", "--message", "Hello", "--out", str(self.out_dir)],
        )
        self.assertEqual(result.exit_code, 1)

    def test_unknown_project_exits_with_error(self) -> None:
        result = self.runner.invoke(app, ["build", "--project", "nobody", "--out", str(self.out_dir)])
        self.assertEqual(result.exit_code, 1)

    def test_nothing_to_build(self) -> None:
        result = self.runner.invoke(app, ["build", "--out", str(self.out_dir)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No projects to process", result.output)
