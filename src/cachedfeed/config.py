from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_CACHE_EXPIRE = 86400
DEFAULT_TIMEOUT = 20.0
DEFAULT_USER_AGENT = "cachedfeed (+https://github.com/cachedfeed/cachedfeed)"


@dataclass(frozen=True)
class FeedConfig:
    """Settings for fetching and caching feeds.

    Caching is disabled unless ``cache_dir`` is set.
    """

    cache_dir: Optional[Path] = None
    cache_expire: int = DEFAULT_CACHE_EXPIRE
    timeout: float = DEFAULT_TIMEOUT
    follow_redirects: bool = True
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if self.cache_dir is not None and not isinstance(self.cache_dir, Path):
            object.__setattr__(self, "cache_dir", Path(self.cache_dir))

    @property
    def cache_enabled(self) -> bool:
        return self.cache_dir is not None
