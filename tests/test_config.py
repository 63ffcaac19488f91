"""Tests for deltasync configuration management."""

from __future__ import annotations

import os
import stat
import tomllib
from pathlib import Path

import pytest
from pydantic import SecretStr, ValidationError

from deltasync.config import (
    PREVIEW_ENDPOINT,
    PRODUCTION_ENDPOINT,
    ApiMode,
    AppConfig,
    RetryConfig,
    SyncInitOptions,
    SyncOptions,
    _dump_toml,
    _format_toml_value,
    ensure_dirs,
    load_config,
    save_config,
)

ENV_ID = "975bf280-fd91-488c-994c-2f04416e5ee3"


# ---------------------------------------------------------------------------
# 1. SyncOptions validation
# ---------------------------------------------------------------------------


def test_sync_options_defaults():
    opts = SyncOptions(environment_id=ENV_ID)
    assert opts.api_mode is ApiMode.PUBLIC
    assert opts.base_url == PRODUCTION_ENDPOINT
    assert opts.requires_auth is False
    assert opts.enable_resilience is True
    assert opts.retry == RetryConfig()


def test_environment_id_normalized():
    opts = SyncOptions(environment_id=f"  {ENV_ID.upper()}  ")
    assert opts.environment_id == ENV_ID


@pytest.mark.parametrize("env", ["", "not-a-guid", "1234"])
def test_environment_id_must_be_guid(env: str):
    with pytest.raises(ValidationError, match="valid GUID"):
        SyncOptions(environment_id=env)


def test_environment_id_cannot_be_empty_guid():
    with pytest.raises(ValidationError, match="empty GUID"):
        SyncOptions(environment_id="00000000-0000-0000-0000-000000000000")


@pytest.mark.parametrize("mode", [ApiMode.PREVIEW, ApiMode.SECURE])
def test_api_key_required_outside_public_mode(mode: ApiMode):
    with pytest.raises(ValidationError, match="api_key is required"):
        SyncOptions(environment_id=ENV_ID, api_mode=mode)
    with pytest.raises(ValidationError, match="api_key is required"):
        SyncOptions(environment_id=ENV_ID, api_mode=mode, api_key="   ")


def test_preview_mode_uses_preview_endpoint():
    opts = SyncOptions(environment_id=ENV_ID, api_mode="preview", api_key="k")
    assert opts.base_url == PREVIEW_ENDPOINT
    assert opts.requires_auth is True


def test_secure_mode_uses_production_endpoint():
    opts = SyncOptions(environment_id=ENV_ID, api_mode="secure", api_key="k")
    assert opts.base_url == PRODUCTION_ENDPOINT
    assert opts.requires_auth is True


def test_custom_endpoint_trailing_slash_stripped():
    opts = SyncOptions(environment_id=ENV_ID, production_endpoint="http://localhost:8080/")
    assert opts.base_url == "http://localhost:8080"


@pytest.mark.parametrize("endpoint", ["deliver.kontent.ai", "ftp://deliver.kontent.ai", "https://"])
def test_endpoint_must_be_absolute_http_url(endpoint: str):
    with pytest.raises(ValidationError, match="absolute http"):
        SyncOptions(environment_id=ENV_ID, production_endpoint=endpoint)


@pytest.mark.parametrize(
    "retry",
    [{"max_retries": -1}, {"base_delay": 0}, {"max_delay": -2}, {"timeout": 0}],
)
def test_retry_config_bounds(retry: dict):
    with pytest.raises(ValidationError):
        SyncOptions(environment_id=ENV_ID, retry=retry)


def test_api_key_not_in_repr():
    opts = SyncOptions(environment_id=ENV_ID, api_mode="secure", api_key="super-secret")
    assert "super-secret" not in repr(opts)
    assert "super-secret" not in str(opts)


# ---------------------------------------------------------------------------
# 2. SyncInitOptions query parameters
# ---------------------------------------------------------------------------


def test_init_options_empty_by_default():
    assert SyncInitOptions().to_query_params() == {}


def test_init_options_full():
    params = SyncInitOptions(
        content_types={"product", "article"},
        collections={"eu", "us"},
        language="de",
    ).to_query_params()
    assert params == {
        "system.type[in]": "article,product",
        "system.collection[in]": "eu,us",
        "system.language": "de",
    }


def test_ignore_fallbacks_requires_language():
    assert SyncInitOptions(ignore_language_fallbacks=True).to_query_params() == {}
    params = SyncInitOptions(language="de", ignore_language_fallbacks=True).to_query_params()
    assert params["language"] == "de"


# ---------------------------------------------------------------------------
# 3. Paths
# ---------------------------------------------------------------------------


def test_base_dir_property(base_dir: Path):
    assert AppConfig().base_dir == base_dir


def test_log_dir(base_dir: Path):
    assert AppConfig().log_dir == base_dir / "logs"


def test_ensure_dirs_creates_directories(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    fresh = tmp_path / "fresh"
    monkeypatch.setattr("deltasync.config.get_base_dir", lambda: fresh)

    ensure_dirs()

    assert fresh.is_dir()
    assert (fresh / "logs").is_dir()


# ---------------------------------------------------------------------------
# 4. Load / save
# ---------------------------------------------------------------------------


def test_load_config_no_file_returns_defaults(base_dir: Path):
    cfg = load_config()
    assert cfg.logging.level == "info"
    assert cfg.clients == {}


def test_save_load_round_trip(base_dir: Path):
    cfg = AppConfig(
        logging={"level": "debug"},
        clients={
            "blog": SyncOptions(environment_id=ENV_ID),
            "shop preview": SyncOptions(
                environment_id="11111111-2222-3333-4444-555555555555",
                api_mode="preview",
                api_key="p@ss\"word",
                enable_resilience=False,
                retry={"max_retries": 5, "base_delay": 0.5},
            ),
        },
    )
    save_config(cfg)
    loaded = load_config()

    assert loaded.logging.level == "debug"
    assert loaded.clients["blog"] == cfg.clients["blog"]
    shop = loaded.clients["shop preview"]
    assert shop.api_mode is ApiMode.PREVIEW
    assert shop.api_key.get_secret_value() == 'p@ss"word'
    assert shop.enable_resilience is False
    assert shop.retry.max_retries == 5
    assert shop.retry.base_delay == 0.5


def test_load_config_from_explicit_path(tmp_path: Path):
    path = tmp_path / "custom.toml"
    path.write_text(
        f'[clients.blog]\nenvironment_id = "{ENV_ID}"\n\n[clients.blog.retry]\ntimeout = 5.0\n',
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.clients["blog"].retry.timeout == 5.0
    assert cfg.clients["blog"].retry.max_retries == 3


def test_load_config_invalid_raises(tmp_path: Path):
    path = tmp_path / "bad.toml"
    path.write_text('[clients.blog]\nenvironment_id = "nope"\n', encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(path)


def test_save_config_sets_permissions(base_dir: Path):
    save_config(AppConfig())
    mode = stat.S_IMODE(os.stat(base_dir / "config.toml").st_mode)
    assert mode == 0o600


# ---------------------------------------------------------------------------
# 5. TOML writer
# ---------------------------------------------------------------------------


def test_format_toml_value_string():
    assert _format_toml_value("hello") == '"hello"'


def test_format_toml_value_escapes():
    assert _format_toml_value('say "hi"') == '"say \\"hi\\""'
    assert _format_toml_value("back\\slash") == '"back\\\\slash"'


def test_format_toml_value_scalars():
    assert _format_toml_value(42) == "42"
    assert _format_toml_value(1.5) == "1.5"
    assert _format_toml_value(True) == "true"
    assert _format_toml_value(False) == "false"


def test_format_toml_value_secret_str():
    assert _format_toml_value(SecretStr("my-key")) == '"my-key"'


def test_format_toml_value_unsupported_type():
    with pytest.raises(TypeError, match="Unsupported TOML value type"):
        _format_toml_value([1, 2, 3])


def test_dump_toml_structure():
    cfg = AppConfig(clients={"blog": SyncOptions(environment_id=ENV_ID)})
    toml_str = _dump_toml(cfg)

    assert "[logging]" in toml_str
    assert '[clients."blog"]' in toml_str
    assert '[clients."blog".retry]' in toml_str

    parsed = tomllib.loads(toml_str)
    assert parsed["clients"]["blog"]["api_mode"] == "public"
    assert parsed["clients"]["blog"]["retry"]["timeout"] == 30.0


def test_dump_toml_escapes_client_names():
    cfg = AppConfig(
        clients={
            'team "a"': SyncOptions(environment_id=ENV_ID),
            "back\\slash": SyncOptions(environment_id=ENV_ID),
        }
    )
    parsed = tomllib.loads(_dump_toml(cfg))
    assert set(parsed["clients"]) == {'team "a"', "back\\slash"}
    assert parsed["clients"]['team "a"']["retry"]["max_retries"] == 3


def test_format_toml_value_escapes_control_characters():
    raw = "line1\nline2\tend"
    assert tomllib.loads("v = " + _format_toml_value(raw))["v"] == raw
