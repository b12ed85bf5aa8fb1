"""Configuration management.

``Settings`` is a **metaclass-based singleton**: the first call to
``Settings.load()`` creates the instance; every later call returns
the same object.  Use ``update()`` to change values at runtime, or
``reload()`` to re-read everything from disk.

The cache root is ``$ARXIV_CACHE`` or ``~/.cache/arxiv``.  Optional
overrides live in ``<cache root>/config.yaml``::

    contact_email: you@example.com
    batch_size: 1000
    request_delay: 3.0
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
DB_FILENAME = "index.db"


def default_cache_dir() -> Path:
    """Return ``$ARXIV_CACHE`` or ``~/.cache/arxiv``."""
    env = os.environ.get("ARXIV_CACHE")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".cache" / "arxiv"


# ---------------------------------------------------------------------------
# Singleton metaclass
# ---------------------------------------------------------------------------

class _SettingsMeta(type):
    """Metaclass that enforces a process-wide singleton for *Settings*.

    * First ``Settings(...)`` creates and caches the instance.
    * Later ``Settings(...)`` calls return the cached instance (args ignored).
    """

    _instances: dict[type, Any] = {}

    def __call__(cls, *args: Any, **kwargs: Any) -> Any:
        if cls not in cls._instances:
            cls._instances[cls] = super().__call__(*args, **kwargs)
        return cls._instances[cls]


# ---------------------------------------------------------------------------
# Settings dataclass (singleton)
# ---------------------------------------------------------------------------

@dataclass
class Settings(metaclass=_SettingsMeta):
    """Application settings: singleton with runtime-mutable values.

    Usage::

        settings = Settings.load()               # first call → create
        settings = Settings.load()               # later → same object
        settings.update(request_delay=0.0)       # runtime change
        settings = Settings.reload(cache_dir=p)  # re-read from disk
    """

    cache_dir: Path = Path(".cache/arxiv")
    contact_email: Optional[str] = None

    # Read-through cache
    lru_capacity: int = 500_000

    # Harvester
    batch_size: int = 1000
    request_delay: float = 3.0
    prefetch_delay: float = 1.0

    # Network
    http_timeout: float = 60.0
    oai_base_url: str = "https://export.arxiv.org/oai2"
    api_base_url: str = "https://export.arxiv.org/api/query"
    arxiv_base_url: str = "https://arxiv.org"

    # Extraction
    max_entry_size: int = 100 * 1024 * 1024

    # Detached worker pool
    background_workers: int = 4

    # ── Computed properties ────────────────────────────────────────────

    @property
    def db_path(self) -> Path:
        return self.cache_dir / DB_FILENAME

    @property
    def pdf_dir(self) -> Path:
        return self.cache_dir / "pdf"

    @property
    def src_dir(self) -> Path:
        return self.cache_dir / "src"

    @property
    def user_agent(self) -> str:
        """User-Agent sent to arXiv (mailto added when an email is configured)."""
        from arxivcache import __version__

        if self.contact_email:
            return f"arxivcache/{__version__} (mailto:{self.contact_email})"
        return f"arxivcache/{__version__}"

    # ── Runtime helpers ───────────────────────────────────────────────

    def update(self, **kwargs: Any) -> None:
        """Mutate settings fields at runtime.

        >>> Settings.load().update(batch_size=10)
        """
        for key, value in kwargs.items():
            if key not in _field_names():
                raise AttributeError(f"Settings has no field '{key}'")
            setattr(self, key, value)

    # ── Factory / lifecycle ───────────────────────────────────────────

    @classmethod
    def load(cls, cache_dir: Optional[Path] = None) -> "Settings":
        """Load or return the singleton Settings instance.

        On first call the singleton is created; subsequent calls return
        the cached instance.  Pass *cache_dir* to override the cache root
        (defaults to :func:`default_cache_dir`).
        """
        if cls in _SettingsMeta._instances:
            return _SettingsMeta._instances[cls]  # type: ignore[return-value]

        cache_dir = Path(cache_dir) if cache_dir is not None else default_cache_dir()
        overrides = _load_overrides(cache_dir / CONFIG_FILENAME)
        return cls(cache_dir=cache_dir, **overrides)

    @classmethod
    def reload(cls, cache_dir: Optional[Path] = None) -> "Settings":
        """Discard the current singleton and re-load from disk."""
        cls.reset()
        return cls.load(cache_dir)

    @classmethod
    def reset(cls) -> None:
        """Discard the singleton so the next ``load()`` re-creates it."""
        _SettingsMeta._instances.pop(cls, None)


def _field_names() -> set[str]:
    return {f.name for f in fields(Settings)}


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_overrides(path: Path) -> dict[str, Any]:
    """Read known setting overrides from ``config.yaml``.

    Unknown keys are ignored; a missing or malformed file yields no overrides.
    """
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}

    allowed = _field_names() - {"cache_dir"}
    overrides = {}
    for key, value in data.items():
        if key in allowed and value is not None:
            overrides[key] = value
        else:
            logger.debug("Ignoring config key %r", key)
    return overrides


def save_settings(settings: Settings) -> Path:
    """Persist the tunable settings to ``<cache_dir>/config.yaml``."""
    path = settings.cache_dir / CONFIG_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        f.name: getattr(settings, f.name)
        for f in fields(settings)
        if f.name != "cache_dir"
    }
    with open(path, "w", encoding="utf-8") as f:
        f.write("# arxivcache settings\n")
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    return path
