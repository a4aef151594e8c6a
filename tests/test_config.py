"""
Tests for typed configuration objects.
"""

from dataclasses import replace

from app.config import DigistoreConfig, MediaStoreConfig


class TestDigistoreConfig:
    def test_complete_config_has_nothing_missing(self, digistore_config: DigistoreConfig):
        assert digistore_config.missing_settings == []

    def test_missing_vendor_id_is_reported(self, digistore_config: DigistoreConfig):
        config = replace(digistore_config, vendor_id="")
        assert config.missing_settings == ["DIGISTORE_VENDOR_ID"]

    def test_everything_missing(self, digistore_config: DigistoreConfig):
        config = replace(digistore_config, vendor_id="", ipn_passphrase="")
        assert config.missing_settings == ["DIGISTORE_VENDOR_ID", "DIGISTORE_IPN_PASSPHRASE"]


class TestMediaStoreConfig:
    def test_needs_all_credentials(self):
        config = MediaStoreConfig(cloud_name="demo", api_key="k", api_secret="", timeout_seconds=1.0)
        assert not config.is_configured
        assert replace(config, api_secret="s").is_configured
