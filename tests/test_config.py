"""
OrgLens - Engine Configuration Tests
====================================
Tests for YAML loading, validation and immutability of EngineConfig.
"""

import sys
from dataclasses import FrozenInstanceError
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from orglens.config import EngineConfig, load_engine_config
from orglens.errors import ConfigError

REPO_CONFIG = Path(__file__).parent.parent / 'config' / 'engine_config.yml'


def test_defaults():
    config = EngineConfig()
    assert config.pair_threshold == 0.75
    assert config.likely_threshold == 0.9
    assert config.title_synonyms['vp'] == 'vice president'
    assert 'Director' in config.leadership_keywords
    assert 'Manager' in config.manager_keywords


def test_repository_config_loads():
    config = load_engine_config(str(REPO_CONFIG))
    assert config.pair_threshold == 0.75
    assert config.likely_threshold == 0.9
    assert config.cycle_timeout_seconds == 300
    assert config.aliases_for('ladder')['source_id'][0] == 'agentId'
    assert config.aliases_for('orgchart')['reports_to'][0] == 'managerId'


def test_load_engine_config_from_yaml(tmp_path):
    path = tmp_path / 'engine.yml'
    path.write_text(
        "engine:\n"
        "  pairThreshold: 0.8\n"
        "  likelyThreshold: 0.95\n"
        "  titleSynonyms:\n"
        "    HR: Human Resources\n"
        "  resolver_workers: 4\n",
        encoding='utf-8',
    )

    config = load_engine_config(str(path))

    assert config.pair_threshold == 0.8
    assert config.likely_threshold == 0.95
    assert dict(config.title_synonyms) == {'hr': 'human resources'}
    assert config.resolver_workers == 4


def test_empty_engine_section_uses_defaults(tmp_path):
    path = tmp_path / 'engine.yml'
    path.write_text("engine:\n", encoding='utf-8')
    assert load_engine_config(str(path)) == EngineConfig()


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_engine_config(str(tmp_path / 'absent.yml'))


@pytest.mark.parametrize('content', [
    "engine:\n  pair_threshold: 1.5\n",
    "engine:\n  unknown_option: 1\n",
    "engine:\n  resolver_workers: 0\n",
    "engine:\n  leadership_keywords: Director\n",
    "engine:\n  field_aliases:\n    ladder:\n      nickname: [nick]\n",
    "- just\n- a list\n",
    "engine: [unclosed\n",
])
def test_invalid_config_raises(tmp_path, content):
    path = tmp_path / 'engine.yml'
    path.write_text(content, encoding='utf-8')
    with pytest.raises(ConfigError):
        load_engine_config(str(path))


def test_config_is_immutable():
    config = EngineConfig()
    with pytest.raises(FrozenInstanceError):
        config.pair_threshold = 0.5
    with pytest.raises(TypeError):
        config.title_synonyms['new'] = 'value'


def test_with_overrides_returns_new_config():
    config = EngineConfig()
    stricter = config.with_overrides(pair_threshold=0.85, resolver_workers=2)

    assert stricter.pair_threshold == 0.85
    assert stricter.resolver_workers == 2
    assert config.pair_threshold == 0.75
    assert stricter.title_synonyms == config.title_synonyms
