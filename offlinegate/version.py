"""Cache version computation.

A configured version of "auto" is replaced by a name derived from a hash of
the manifest URL list and the offline page URL. Adding, removing or renaming
an asset produces a new cache generation. Response bodies are not hashed:
redeploying changed files under the same URLs needs an explicit version or a
changed manifest.
"""

import hashlib

from .config import AUTO_VERSION, CacheConfig


def compute_cache_version(prefix: str, manifest: tuple[str, ...], offline_url: str) -> str:
    """Compute a cache version from the manifest URLs (not the asset bodies)."""
    content = "\n".join((offline_url, *manifest))
    content_hash = hashlib.sha256(content.encode()).hexdigest()[:8]
    return f"{prefix}-{content_hash}"


def resolve_cache_version(config: CacheConfig) -> str:
    """Return the concrete cache version for a cache configuration."""
    if config.version != AUTO_VERSION:
        return config.version
    return compute_cache_version(config.prefix, config.manifest, config.offline_url)
