"""Closed set of provider kinds mapped to shared adapter instances"""

from __future__ import annotations

import logging

from tq_shared.constants import ProviderKind

from tq_backend.core.config import get_settings

from .base import IssueProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider
from .transport import ProviderTransport, RateAwareTransport

logger = logging.getLogger(__name__)

_providers: dict[ProviderKind, IssueProvider] = {}


def _build_provider(kind: ProviderKind) -> IssueProvider:
    settings = get_settings()
    if kind is ProviderKind.GITHUB:
        return GitHubProvider(
            transport=RateAwareTransport(
                timeout_seconds=settings.provider_timeout_seconds,
                max_wait_seconds=settings.rate_limit_max_wait_seconds,
            ),
            api_url=settings.github_api_url,
            page_size=settings.provider_page_size,
        )
    if kind is ProviderKind.GITLAB:
        return GitLabProvider(
            transport=ProviderTransport(timeout_seconds=settings.provider_timeout_seconds),
            base_url=settings.gitlab_base_url,
            page_size=settings.provider_page_size,
        )
    raise ValueError(f"Unsupported provider: {kind}")


def get_provider(kind: ProviderKind | str) -> IssueProvider:
    """Accepts the tag stored on a tracked repository"""
    kind = ProviderKind(kind)
    provider = _providers.get(kind)
    if provider is None:
        provider = _build_provider(kind)
        _providers[kind] = provider
    return provider


async def close_providers() -> None:
    for kind, provider in list(_providers.items()):
        await provider.aclose()
        logger.info(f"Closed {kind.value} provider transport")
    _providers.clear()


def reset_providers_for_testing() -> None:
    _providers.clear()
