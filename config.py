"""
SNIPE RADAR CONFIGURATION

Single source of truth for every tunable in the service.

Layering (later wins):
  DEFAULT_CONFIG (below)
        ↓
  YAML file (--config / SNIPE_RADAR_CONFIG)
        ↓
  Environment variables (.env supported)

The `chains` list is consumed by EVERY aggregation call site (new pools,
trending pools, detector polling). Do not hard-code chain lists elsewhere.
"""
import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SNIPE_RADAR_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    # ================================================================
    # CHAINS (shared by all aggregation call sites)
    # ================================================================
    'chains': ['ethereum', 'bsc', 'solana', 'base', 'arbitrum'],

    # ================================================================
    # UPSTREAM MARKET DATA (GeckoTerminal FREE API)
    # ================================================================
    'geckoterminal': {
        'base_url': 'https://api.geckoterminal.com/api/v2',
        'timeout_seconds': 10,
        'cache_ttl_seconds': 30,
        'min_request_interval_seconds': 0.0,   # 0 = no spacing, cache bounds the rate
        'network_map': {
            'ethereum': 'eth',
            'bsc': 'bsc',
            'solana': 'solana',
            'base': 'base',
            'arbitrum': 'arbitrum',
            'polygon': 'polygon-pos',
            'avalanche': 'avax',
        },
    },

    # ================================================================
    # NEW TOKEN DETECTOR
    # ================================================================
    'detector': {
        'poll_interval_ms': 15000,
        'min_liquidity_usd': 1000,
        'max_age_seconds': 3600,
        'fetch_limit': 50,
        'sweep_interval_seconds': 60 * 60,
        'retention_seconds': 24 * 60 * 60,
        'chain_scoped_keys': False,   # True = dedup on (chain, address)
    },

    # ================================================================
    # FAN-OUT BROADCASTER
    # ================================================================
    'fanout': {
        'trending_interval_seconds': 30,
        'price_interval_seconds': 10,
        'stats_interval_seconds': 60,
        'price_chains': ['ethereum', 'bsc', 'solana'],
        'price_pools_per_chain': 10,
        'chain_update_pools': 10,
        'snapshot_limit': 20,
        'trending_limit': 24,
    },

    # ================================================================
    # HTTP / SOCKET SERVER
    # ================================================================
    'server': {
        'host': '0.0.0.0',
        'port': 4000,
        'allowed_origins': '*',
    },

    'logging': {
        'level': 'INFO',
    },
}

# env var -> (section path, caster)
_ENV_OVERRIDES = {
    'PORT': (('server', 'port'), int),
    'HOST': (('server', 'host'), str),
    'ALLOWED_ORIGINS': (('server', 'allowed_origins'), str),
    'LOG_LEVEL': (('logging', 'level'), str),
    'CHAINS': (('chains',), lambda raw: [c.strip() for c in raw.split(',') if c.strip()]),
    'CACHE_TTL_SECONDS': (('geckoterminal', 'cache_ttl_seconds'), float),
    'GECKOTERMINAL_BASE_URL': (('geckoterminal', 'base_url'), str),
    'POLL_INTERVAL_MS': (('detector', 'poll_interval_ms'), int),
    'MIN_LIQUIDITY_USD': (('detector', 'min_liquidity_usd'), float),
    'MAX_AGE_SECONDS': (('detector', 'max_age_seconds'), int),
}


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge `override` into a copy of `base`.

    Nested dicts are merged key by key; any other value replaces the base value.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """Read a YAML overlay. Missing file -> empty overlay."""
    if not path.exists():
        logger.warning(f"[CONFIG] Config file not found: {path} (using defaults)")
        return {}

    with path.open('r', encoding='utf-8') as fh:
        data = yaml.safe_load(fh) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at top level")
    return data


def apply_env_overrides(config: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    """Apply the supported environment variables on top of `config`."""
    result = copy.deepcopy(config)

    for var, (path, caster) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == '':
            continue
        try:
            value = caster(raw)
        except (TypeError, ValueError):
            logger.warning(f"[CONFIG] Ignoring invalid {var}={raw!r}")
            continue

        node = result
        for key in path[:-1]:
            node = node.setdefault(key, {})
        node[path[-1]] = value

    return result


def load_config(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Args:
        path: Optional YAML file. Falls back to $SNIPE_RADAR_CONFIG.
        env: Environment mapping (defaults to os.environ after loading .env)

    Returns:
        Fully merged configuration dict
    """
    if env is None:
        load_dotenv()
        env = os.environ

    config = copy.deepcopy(DEFAULT_CONFIG)

    yaml_path = path or env.get(CONFIG_ENV_VAR)
    if yaml_path:
        config = deep_merge(config, load_yaml_config(Path(yaml_path)))

    return apply_env_overrides(config, env)


def allowed_origins(config: Mapping[str, Any]):
    """Return '*' or the list of configured CORS origins."""
    raw = config.get('server', {}).get('allowed_origins', '*')
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if raw.strip() == '*':
        return '*'
    return [origin.strip() for origin in raw.split(',') if origin.strip()]
