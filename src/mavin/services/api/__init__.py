"""API service modules for external music metadata providers.

This package contains clients for the metadata providers:
- Spotify: Web API search with client-credentials auth
- Deezer: Public search, related tracks and artist snapshots
- SoundCloud: api-v2 track search
- Transformers: Provider payloads to the unified metadata schema
- Orchestrator: Concurrent, priority-ordered resolution across providers
"""

from .api_base import ApiRequestFunc, BaseProviderClient, EnhancedRateLimiter, MetadataProvider
from .deezer import DeezerClient
from .orchestrator import ProviderOrchestrator, Resolution, ResolutionStatus, create_provider_orchestrator
from .soundcloud import SoundCloudClient
from .spotify import SpotifyClient

__all__ = [
    "ApiRequestFunc",
    "BaseProviderClient",
    "DeezerClient",
    "EnhancedRateLimiter",
    "MetadataProvider",
    "ProviderOrchestrator",
    "Resolution",
    "ResolutionStatus",
    "SoundCloudClient",
    "SpotifyClient",
    "create_provider_orchestrator",
]
