from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dropvault.config import DropVaultConfig
from dropvault.errors import ValidationError
from dropvault.models import NEVER, SharePolicy, UploadMetadata, Visibility, parse_expires_in


def test_from_settings_accepts_ui_toggles():
    policy = SharePolicy.from_settings({"is_public": True, "has_password": True, "password": "abc123", "expires_in": "7"})

    assert policy.visibility is Visibility.PUBLIC
    assert policy.password == "abc123"
    assert policy.expires_in == timedelta(days=7)


def test_from_settings_defaults_to_private_never_expiring():
    policy = SharePolicy.from_settings({})

    assert policy == SharePolicy()
    assert policy.visibility is Visibility.PRIVATE
    assert policy.expires_in == NEVER
    assert policy.expires_at(datetime(2026, 1, 1, tzinfo=timezone.utc)) is None


def test_has_password_false_drops_the_password():
    policy = SharePolicy.from_settings({"visibility": "private", "has_password": False, "password": "ignored"})

    assert policy.password is None


@pytest.mark.parametrize(
    "settings",
    [
        {"visibility": "friends"},
        {"visibility": "public", "is_public": True},
        {"has_password": True},
        {"has_password": "yes", "password": "pw"},
        {"expires_in": "soon"},
        {"expires_in": "0"},
        {"expires_in": -3},
        {"expires_in": True},
        {"max_downloads": 3},
    ],
)
def test_from_settings_rejects_invalid_input(settings):
    with pytest.raises(ValidationError):
        SharePolicy.from_settings(settings)


def test_parse_expires_in_variants():
    assert parse_expires_in(None) == NEVER
    assert parse_expires_in(" Never ") == NEVER
    assert parse_expires_in("30") == timedelta(days=30)
    assert parse_expires_in(0.5) == timedelta(hours=12)
    assert parse_expires_in(timedelta(minutes=5)) == timedelta(minutes=5)


def test_expiry_is_relative_to_issue_time():
    issued = datetime(2026, 3, 1, tzinfo=timezone.utc)
    policy = SharePolicy(expires_in=timedelta(days=1))

    assert policy.expires_at(issued) == issued + timedelta(days=1)


def test_policy_repr_masks_password():
    assert "hunter2" not in repr(SharePolicy(password="hunter2"))


def test_upload_metadata_validation():
    UploadMetadata(name="ok.txt", size_bytes=1).validate()
    for bad in (
        UploadMetadata(name="", size_bytes=1),
        UploadMetadata(name="x", size_bytes=0),
        UploadMetadata(name="x", size_bytes=True),
        UploadMetadata(name="x", size_bytes=1, owner_id=""),
    ):
        with pytest.raises(ValidationError):
            bad.validate()


def test_config_from_env_overrides():
    cfg = DropVaultConfig.from_env(
        {
            "DROPVAULT_TRANSFER_MODE": "External",
            "DROPVAULT_LOG_LEVEL": "debug",
            "DROPVAULT_LINK_BASE_URL": "https://files.test/s/",
        }
    )

    assert cfg.uploads.transfer_mode == "external"
    assert cfg.observability.log_level == "DEBUG"
    assert cfg.sharing.link_base_url == "https://files.test/s"
    assert DropVaultConfig.from_env({}).uploads.transfer_mode == "simulated"
    with pytest.raises(ValueError):
        DropVaultConfig.from_env({"DROPVAULT_TRANSFER_MODE": "carrier-pigeon"})


@pytest.mark.parametrize("value", ["nan", "inf", "-inf", float("nan"), 1e12, 10**400, "1e400"])
def test_parse_expires_in_rejects_unrepresentable_durations(value):
    with pytest.raises(ValidationError):
        parse_expires_in(value)


def test_expiry_past_the_calendar_is_a_validation_error():
    policy = SharePolicy(expires_in=timedelta(days=5_000_000))
    policy.validate()

    with pytest.raises(ValidationError):
        policy.expires_at(datetime(2026, 3, 1, tzinfo=timezone.utc))
