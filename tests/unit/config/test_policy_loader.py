# SPDX-License-Identifier: Apache-2.0
"""Tests for DispatchPolicy and the YAML policy loader."""

from __future__ import annotations

from decimal import Decimal

import pytest

from aegis.config import ConfigVersionError, DispatchPolicy, load_policy


def write(tmp_path, text: str):
    path = tmp_path / "policy.yaml"
    path.write_text(text)
    return path


class TestDispatchPolicy:
    def test_default_values(self):
        policy = DispatchPolicy()

        assert policy.search_radius_km == 50.0
        assert policy.max_candidates == 3
        assert policy.max_match_attempts == 5
        assert policy.platform_fee_percent == Decimal("20")
        assert policy.currency == "USD"
        assert policy.location_staleness.total_seconds() == 300

    def test_backoff_doubles_and_caps(self):
        policy = DispatchPolicy(
            match_retry_initial_delay_seconds=5, match_retry_max_delay_seconds=30
        )

        assert [policy.match_retry_delay(n) for n in range(1, 6)] == [5, 10, 20, 30, 30]

    def test_max_delay_below_initial_rejected(self):
        with pytest.raises(ValueError, match="match_retry_max_delay_seconds"):
            DispatchPolicy(match_retry_initial_delay_seconds=10, match_retry_max_delay_seconds=5)

    def test_currency_normalized(self):
        assert DispatchPolicy(currency=" eur ").currency == "EUR"
        with pytest.raises(ValueError):
            DispatchPolicy(currency="EURO")

    @pytest.mark.parametrize("field, value", [("max_candidates", 0), ("max_candidates", 21), ("search_radius_km", 0)])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValueError):
            DispatchPolicy(**{field: value})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            DispatchPolicy(surge_multiplier=2)

    def test_merge_overrides_skips_none(self):
        policy = DispatchPolicy().merge_overrides(max_candidates=5, currency=None)

        assert policy.max_candidates == 5
        assert policy.currency == "USD"


class TestLoadPolicy:
    def test_kebab_case_keys(self, tmp_path):
        path = write(
            tmp_path,
            'config_version: "1"\nsearch-radius-km: 25\nmax-candidates: 2\nplatform-fee-percent: "15"\n',
        )

        policy = load_policy(path)

        assert policy.search_radius_km == 25.0
        assert policy.max_candidates == 2
        assert policy.platform_fee_percent == Decimal("15")

    def test_environment_variables_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AEGIS_CURRENCY", "GBP")
        path = write(tmp_path, 'config_version: "1"\ncurrency: ${AEGIS_CURRENCY}\n')

        assert load_policy(path).currency == "GBP"

    def test_from_yaml_delegates(self, tmp_path):
        path = write(tmp_path, 'config_version: "1"\nmax_match_attempts: 2\n')

        assert DispatchPolicy.from_yaml(path).max_match_attempts == 2

    def test_missing_version(self, tmp_path):
        path = write(tmp_path, "max_candidates: 2\n")

        with pytest.raises(ConfigVersionError, match="config_version missing"):
            load_policy(path)

    def test_old_version(self, tmp_path):
        path = write(tmp_path, 'config_version: "0"\n')

        with pytest.raises(ConfigVersionError, match="too old"):
            load_policy(path)

    def test_newer_version_warns(self, tmp_path):
        path = write(tmp_path, 'config_version: "2"\n')

        with pytest.warns(UserWarning, match="best-effort"):
            policy = load_policy(path)
        assert policy.config_version == "2"

    def test_unknown_key(self, tmp_path):
        path = write(tmp_path, 'config_version: "1"\nsurge: 2\n')

        with pytest.raises(ValueError, match="Invalid dispatch policy"):
            load_policy(path)

    def test_not_a_mapping(self, tmp_path):
        path = write(tmp_path, "- a\n- b\n")

        with pytest.raises(ValueError, match="dictionary"):
            load_policy(path)

    def test_invalid_yaml(self, tmp_path):
        path = write(tmp_path, "config_version: [\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            load_policy(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_policy(tmp_path / "absent.yaml")
