"""Auction data provider clients."""

from auction_collector.core.config import CollectorSettings
from auction_collector.core.resilience import ExponentialBackoff, RateLimiter
from auction_collector.providers.apicar import ApiCarClient
from auction_collector.providers.base import PageResult, ProviderClient, SaleQuery

# APICAR `site` values
PROVIDER_SITES = {"copart": 1, "iaai": 2}


def build_providers(settings: CollectorSettings) -> dict[str, ProviderClient]:
    """Create one independently rate-limited client per provider."""
    return {
        name: ApiCarClient(
            name=name,
            site=site,
            api_key=settings.api_key,
            base_url=settings.base_url,
            rate_limiter=RateLimiter(min_interval=settings.min_request_interval, name=name),
            backoff=ExponentialBackoff.from_settings(settings),
            rate_limit_factor=settings.rate_limit_factor,
            timeout=settings.request_timeout,
        )
        for name, site in PROVIDER_SITES.items()
    }


__all__ = [
    "ApiCarClient",
    "PageResult",
    "ProviderClient",
    "SaleQuery",
    "PROVIDER_SITES",
    "build_providers",
]
