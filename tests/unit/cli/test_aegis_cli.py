# SPDX-License-Identifier: Apache-2.0
"""Tests for the aegis command line."""

from __future__ import annotations

import re

from typer.testing import CliRunner

from aegis.cli import app

runner = CliRunner()


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    for command in ("simulate", "policy", "bookings"):
        assert command in result.output


class TestSimulate:
    def test_reference_scenario_in_memory(self):
        result = runner.invoke(app, ["simulate"])

        assert result.exit_code == 0, result.output
        assert "G2 lost the race" in result.output
        assert "captured 45.00 USD" in result.output
        assert "fee 9.00 USD, payout 36.00 USD" in result.output
        assert "Event trail (7 events)" in result.output
        assert "PaymentCaptured" in result.output

    def test_custom_policy_and_rate(self, tmp_path):
        config = tmp_path / "policy.yaml"
        config.write_text('config_version: "1"\nplatform-fee-percent: "10"\n')

        result = runner.invoke(app, ["simulate", "--config", str(config), "--rate", "30"])

        assert result.exit_code == 0, result.output
        assert "captured 54.00 USD (fee 5.40 USD, payout 48.60 USD)" in result.output

    def test_persisted_run_can_be_inspected(self, tmp_path):
        db = tmp_path / "aegis.db"
        result = runner.invoke(app, ["simulate", "--db", str(db)])
        assert result.exit_code == 0, result.output
        booking_id = re.search(r"Requested booking (\S+)", result.output).group(1)

        events = runner.invoke(app, ["bookings", "events", booking_id, "--db", str(db)])
        assert events.exit_code == 0, events.output
        assert "(7)" in events.output
        assert "BookingCompleted" in events.output

        locations = runner.invoke(
            app, ["bookings", "locations", booking_id, "--db", str(db), "--last", "2"]
        )
        assert locations.exit_code == 0, locations.output
        assert "G1" in locations.output
        assert len([line for line in locations.output.splitlines() if " G1 " in line]) == 2


class TestBookingsCommands:
    def test_missing_database(self, tmp_path):
        result = runner.invoke(app, ["bookings", "events", "B1", "--db", str(tmp_path / "none.db")])

        assert result.exit_code == 1
        assert "Database not found" in result.output

    def test_summary_counts_statuses_and_events(self, tmp_path):
        db = tmp_path / "aegis.db"
        runner.invoke(app, ["simulate", "--db", str(db)])

        result = runner.invoke(app, ["bookings", "summary", "--db", str(db)])

        assert result.exit_code == 0, result.output
        rows = dict(line.split() for line in result.output.splitlines() if len(line.split()) == 2)
        assert rows["completed"] == "1"
        assert rows["requested"] == "0"
        assert rows["total"] == "1"
        assert rows["events"] == "7"

    def test_unknown_booking(self, tmp_path):
        db = tmp_path / "aegis.db"
        runner.invoke(app, ["simulate", "--db", str(db)])

        result = runner.invoke(app, ["bookings", "events", "missing", "--db", str(db)])

        assert result.exit_code == 0
        assert "No events for booking missing" in result.output


class TestPolicyShow:
    def test_prints_effective_policy(self, tmp_path):
        config = tmp_path / "policy.yaml"
        config.write_text('config_version: "1"\nmax-candidates: 4\n')

        result = runner.invoke(app, ["policy", "show", str(config)])

        assert result.exit_code == 0, result.output
        assert "max_candidates: 4" in result.output
        assert "currency: USD" in result.output

    def test_invalid_policy(self, tmp_path):
        config = tmp_path / "policy.yaml"
        config.write_text('config_version: "1"\nmax-candidates: 0\n')

        result = runner.invoke(app, ["policy", "show", str(config)])

        assert result.exit_code == 1
        assert "Invalid policy" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["policy", "show", str(tmp_path / "absent.yaml")])

        assert result.exit_code == 1
        assert "Policy file not found" in result.output
