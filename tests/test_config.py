#!/usr/bin/env python3
"""
Tests for configuration - SessionConfig documents and RelayConfig from the environment.
"""

import argparse

import pytest

from termrelay import config as config_module
from termrelay.config import DEFAULT_IDLE_TIMEOUT_SECS, RelayConfig, SessionConfig

RELAY_ENV_VARS = [
    'TERMRELAY_DATA_DIR', 'TERMRELAY_LOG_FILE', 'TERMRELAY_VERBOSITY', 'TERMRELAY_BIN', 'AUGGIE_BIN',
    'SLACK_BOT_TOKEN', 'SLACK_APP_TOKEN', 'TERMRELAY_TICK_INTERVAL', 'TERMRELAY_IDLE_FINALIZE',
    'TERMRELAY_TRANSCRIPT_MAX', 'TERMRELAY_CHUNK_LIMIT', 'TERMRELAY_MAX_FINAL_CHUNKS',
    'TERMRELAY_STREAM_LIFETIME', 'TERMRELAY_STOP_GRACE', 'TERMRELAY_SUBMIT_DELAY',
    'TERMRELAY_IDLE_TIMEOUT', 'TERMRELAY_ENHANCER_DEFAULT',
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in RELAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSessionConfig:

    def test_defaults(self):
        config = SessionConfig()
        assert config.enhancer_default is True
        assert config.ephemeral_default is True
        assert config.idle_timeout_secs == DEFAULT_IDLE_TIMEOUT_SECS
        assert config.size == {'cols': 120, 'rows': 30}

    def test_build_args_in_order(self):
        config = SessionConfig(root_path="/repo", rules="AGENTS.md", model="fast")
        assert config.build_args() == ['--workspace-root', '/repo', '--rules', 'AGENTS.md', '--model', 'fast']
        assert SessionConfig().build_args() == []

    def test_from_dict_ignores_unknown_keys(self):
        config = SessionConfig.from_dict({'model': 'm', 'legacyField': True}, SessionConfig(rules='r'))
        assert config.model == 'm'
        assert config.rules == 'r'

    def test_copy_is_independent(self):
        base = SessionConfig()
        changed = base.copy(model='other')
        assert base.model is None
        assert changed.model == 'other'

    def test_size_falls_back_when_unset(self):
        assert SessionConfig(cols=None, rows=None).size == {'cols': 120, 'rows': 30}


class TestRelayConfig:

    def test_from_env_defaults(self, clean_env):
        config = RelayConfig.from_env()
        assert config.data_dir == 'data'
        assert config.tick_interval == 1.0
        assert config.idle_finalize_seconds == 1.5
        assert config.transcript_max_chars == 12000
        assert config.chunk_limit == 1900
        assert config.max_final_chunks == 5
        assert config.slack_bot_token is None

    def test_from_env_reads_overrides(self, clean_env):
        clean_env.setenv('TERMRELAY_DATA_DIR', '/var/lib/termrelay')
        clean_env.setenv('AUGGIE_BIN', '/opt/auggie')
        clean_env.setenv('SLACK_BOT_TOKEN', 'xoxb-1')
        clean_env.setenv('TERMRELAY_TICK_INTERVAL', '0.5')
        clean_env.setenv('TERMRELAY_IDLE_TIMEOUT', '60')
        clean_env.setenv('TERMRELAY_ENHANCER_DEFAULT', 'false')

        config = RelayConfig.from_env()

        assert config.data_dir == '/var/lib/termrelay'
        assert config.binary == '/opt/auggie'
        assert config.slack_bot_token == 'xoxb-1'
        assert config.tick_interval == 0.5
        assert config.session_defaults.idle_timeout_secs == 60
        assert config.session_defaults.enhancer_default is False

    def test_merge_with_args(self):
        config = RelayConfig()
        args = argparse.Namespace(log_file='relay.log', verbose=2, data_dir='elsewhere', binary=None)
        config.merge_with_args(args)
        assert config.log_file == 'relay.log'
        assert config.verbosity == 2
        assert config.data_dir == 'elsewhere'
        assert config.binary is None

    def test_to_dict_redacts_tokens(self):
        data = RelayConfig(slack_bot_token='xoxb-secret', slack_app_token=None).to_dict()
        assert data['slack_bot_token'] == '***'
        assert data['slack_app_token'] is None
        assert data['session_defaults']['enhancer_default'] is True


class TestGlobalConfig:

    def test_set_and_get(self, clean_env):
        previous = config_module._config
        try:
            custom = RelayConfig(data_dir='custom')
            config_module.set_config(custom)
            assert config_module.get_config() is custom
            assert config_module.reload_config().data_dir == 'data'
        finally:
            config_module._config = previous
