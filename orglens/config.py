"""
OrgLens - Engine Configuration
==============================
Loads engine configuration from YAML into an immutable EngineConfig.

Configuration objects are constructed once per Normalizer/Resolver
instance and never mutated. Reloading means building a new EngineConfig
and new component instances from it.

Expected YAML layout (config/engine_config.yml):

    engine:
      pair_threshold: 0.75
      likely_threshold: 0.9
      title_synonyms: {vp: vice president, mgr: manager}
      leadership_keywords: [Chief, VP, Director]
      manager_keywords: [Manager, Lead]
      field_aliases:
        ladder:
          source_id: [agentId]
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import yaml

from orglens.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/engine_config.yml'

DEFAULT_PAIR_THRESHOLD = 0.75
DEFAULT_LIKELY_THRESHOLD = 0.9

DEFAULT_TITLE_SYNONYMS = {
    'vp': 'vice president',
    'svp': 'senior vice president',
    'evp': 'executive vice president',
    'sr': 'senior',
    'snr': 'senior',
    'jr': 'junior',
    'mgr': 'manager',
    'dir': 'director',
    'exec': 'executive',
    'asst': 'assistant',
    'assoc': 'associate',
    'ceo': 'chief executive officer',
    'cto': 'chief technology officer',
    'cfo': 'chief financial officer',
    'coo': 'chief operating officer',
    'cmo': 'chief marketing officer',
    'mktg': 'marketing',
    'ops': 'operations',
    'eng': 'engineering',
    'tech': 'technology',
    'fin': 'finance',
    'subagent': 'sub agent',
}

DEFAULT_LEADERSHIP_KEYWORDS = (
    'Chief', 'VP', 'Vice President', 'President', 'Director', 'Head',
    'CEO', 'CTO', 'CFO', 'COO', 'CMO',
)

DEFAULT_MANAGER_KEYWORDS = ('Manager', 'Lead', 'Supervisor')

DEFAULT_HONORIFICS = (
    'mr', 'mrs', 'ms', 'miss', 'mx', 'dr', 'prof', 'sir', 'dame', 'madam',
    'jr', 'sr', 'ii', 'iii', 'iv', 'phd', 'md', 'esq',
)

# Canonical field -> source-native field names tried in order
DEFAULT_FIELD_ALIASES = {
    'source_id': (
        'sourceId', 'source_id', 'id', 'agentId', 'agent_id',
        'employeeId', 'employee_id',
    ),
    'canonical_name': ('canonicalName', 'canonical_name', 'name', 'fullName', 'full_name', 'displayName'),
    'title': ('title', 'role', 'position', 'jobTitle', 'job_title'),
    'department': ('department', 'dept', 'team'),
    'level': ('level', 'tier'),
    'reports_to': (
        'reportsTo', 'reports_to', 'parentId', 'parent_id',
        'managerId', 'manager_id',
    ),
}


def _freeze_aliases(
    overrides: Optional[Mapping[str, Mapping[str, Iterable[str]]]]
) -> Mapping[str, Mapping[str, Tuple[str, ...]]]:
    frozen = {}
    for source_system, per_field in (overrides or {}).items():
        if not isinstance(per_field, Mapping):
            raise ConfigError(f"field_aliases.{source_system} must be a mapping")
        unknown = set(per_field) - set(DEFAULT_FIELD_ALIASES)
        if unknown:
            raise ConfigError(
                f"field_aliases.{source_system} has unknown fields: {sorted(unknown)}"
            )
        frozen[str(source_system)] = MappingProxyType(
            {name: tuple(aliases) for name, aliases in per_field.items()}
        )
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class EngineConfig:
    """Immutable engine configuration. Build with from_dict() or load_engine_config()."""
    pair_threshold: float = DEFAULT_PAIR_THRESHOLD
    likely_threshold: float = DEFAULT_LIKELY_THRESHOLD
    title_synonyms: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_TITLE_SYNONYMS))
    )
    leadership_keywords: FrozenSet[str] = frozenset(DEFAULT_LEADERSHIP_KEYWORDS)
    manager_keywords: FrozenSet[str] = frozenset(DEFAULT_MANAGER_KEYWORDS)
    honorifics: FrozenSet[str] = frozenset(DEFAULT_HONORIFICS)
    field_aliases: Mapping[str, Mapping[str, Tuple[str, ...]]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    ladder_leadership_max_level: int = 2
    ladder_manager_max_level: int = 4
    resolver_workers: int = 1
    cycle_timeout_seconds: Optional[float] = None
    run_history_size: int = 50

    def __post_init__(self):
        self._validate()

    def _validate(self) -> None:
        for name in ('pair_threshold', 'likely_threshold'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be in [0.0, 1.0], got {value!r}")
        if self.resolver_workers < 1:
            raise ConfigError(f"resolver_workers must be >= 1, got {self.resolver_workers}")
        if self.run_history_size < 1:
            raise ConfigError(f"run_history_size must be >= 1, got {self.run_history_size}")
        if self.cycle_timeout_seconds is not None and self.cycle_timeout_seconds <= 0:
            raise ConfigError(
                f"cycle_timeout_seconds must be positive, got {self.cycle_timeout_seconds}"
            )
        if not 0 <= self.ladder_leadership_max_level <= self.ladder_manager_max_level <= 8:
            raise ConfigError(
                "ladder levels must satisfy 0 <= leadership_max <= manager_max <= 8"
            )

    def aliases_for(self, source_system: str) -> Mapping[str, Tuple[str, ...]]:
        """Field aliases for a source: per-source overrides first, then defaults."""
        overrides = self.field_aliases.get(source_system, {})
        merged = {}
        for name, defaults in DEFAULT_FIELD_ALIASES.items():
            extra = overrides.get(name, ())
            merged[name] = tuple(extra) + tuple(a for a in defaults if a not in extra)
        return merged

    def with_overrides(self, **changes: Any) -> 'EngineConfig':
        """Return a new config with some options replaced."""
        return EngineConfig.from_dict({**self.to_dict(), **changes})

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, frozenset):
                value = sorted(value)
            elif f.name == 'field_aliases':
                value = {s: {k: list(v) for k, v in m.items()} for s, m in value.items()}
            elif isinstance(value, Mapping):
                value = dict(value)
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'EngineConfig':
        """
        Build a config from a plain mapping (e.g. parsed YAML).

        Accepts camelCase spellings of the core options
        (pairThreshold, likelyThreshold, titleSynonyms, ...).

        Raises:
            ConfigError: on unknown options or invalid values
        """
        data = dict(data or {})
        camel = {
            'pairThreshold': 'pair_threshold',
            'likelyThreshold': 'likely_threshold',
            'titleSynonyms': 'title_synonyms',
            'leadershipKeywords': 'leadership_keywords',
            'managerKeywords': 'manager_keywords',
        }
        for old, new in camel.items():
            if old in data:
                data[new] = data.pop(old)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown engine config options: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, value in data.items():
            if value is None and name != 'cycle_timeout_seconds':
                continue
            if name == 'title_synonyms':
                if not isinstance(value, Mapping):
                    raise ConfigError("title_synonyms must be a mapping")
                value = MappingProxyType(
                    {str(k).lower(): str(v).lower() for k, v in value.items()}
                )
            elif name in ('leadership_keywords', 'manager_keywords', 'honorifics'):
                if isinstance(value, str):
                    raise ConfigError(f"{name} must be a list, not a string")
                value = frozenset(str(v) for v in value)
            elif name == 'field_aliases':
                value = _freeze_aliases(value)
            kwargs[name] = value

        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(f"Invalid engine config: {e}") from e


def load_engine_config(config_path: str = DEFAULT_CONFIG_PATH) -> EngineConfig:
    """
    Load engine configuration from YAML.

    Args:
        config_path: Path to a YAML file with a top-level 'engine' key

    Returns:
        EngineConfig instance

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigError: If the file content is invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e

    if not isinstance(raw, Mapping):
        raise ConfigError(f"Top level of {path} must be a mapping")

    config = EngineConfig.from_dict(raw.get('engine', {}))
    logger.info(f"Loaded engine config: {path}")
    return config
