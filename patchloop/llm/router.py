"""Provider registry for patchloop.

Holds the rotation state of every configured provider in priority order and
resolves each request to a (provider, credential) route. Like the keyring,
all operations are pure: they take a RotationState and return a new one.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from patchloop.core.config import LLMConfig, provider_credentials
from patchloop.core.exceptions import ConfigError
from patchloop.llm import keyring
from patchloop.llm.keyring import OutcomeKind, ProviderState

logger = logging.getLogger("patchloop.llm.router")


@dataclass(frozen=True)
class Route:
    provider: str
    credential: str

    def __str__(self) -> str:
        return f"{self.provider}:{keyring.mask(self.credential)}"


@dataclass(frozen=True)
class RotationState:
    providers: tuple[ProviderState, ...]

    def get(self, name: str) -> ProviderState:
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(name)

    def with_provider(self, updated: ProviderState) -> RotationState:
        return replace(
            self,
            providers=tuple(updated if p.name == updated.name else p for p in self.providers),
        )

    @property
    def configured(self) -> tuple[ProviderState, ...]:
        return tuple(p for p in self.providers if p.credentials)


def build_rotation_state(
    config: LLMConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> RotationState:
    """Read every enabled provider's credentials from the environment.

    Raises:
        ConfigError: If no provider has a single credential configured.
    """
    if environ is None:
        environ = os.environ

    providers = []
    for provider in config.providers:
        if not provider.enabled:
            continue
        creds = provider_credentials(provider, environ)
        providers.append(
            keyring.new_provider_state(
                provider.name,
                creds,
                initial_active=config.initial_active_keys,
                cooldown_seconds=config.key_cooldown_seconds,
            )
        )
        logger.debug("Provider '%s': %d credential(s)", provider.name, len(creds))

    state = RotationState(providers=tuple(providers))
    if not state.configured:
        names = ", ".join(v for p in config.providers for v in p.keys_env) or "<none>"
        raise ConfigError(f"No LLM credentials configured. Set one of: {names}")
    return state


def route(state: RotationState, now: float) -> tuple[RotationState, Route]:
    """Resolve the next (provider, credential) pair.

    Providers are tried in priority order, skipping those without
    credentials. The first provider with a usable key wins; if every provider
    is saturated, the highest-priority one is used with its least-failed key.
    """
    configured = state.configured
    if not configured:
        raise ConfigError("No LLM credentials configured")

    chosen = next((p for p in configured if keyring.has_available(p)), configured[0])
    updated, credential = keyring.next_key(chosen, now)
    return state.with_provider(updated), Route(provider=chosen.name, credential=credential)


def record(state: RotationState, used: Route, outcome: OutcomeKind, now: float) -> RotationState:
    provider = state.get(used.provider)
    return state.with_provider(keyring.log_usage(provider, used.credential, outcome, now))


def expand_if_exhausted(state: RotationState, provider_name: str) -> RotationState:
    """Ramp in another key once every active key of a provider is rate limited."""
    provider = state.get(provider_name)
    if keyring.all_eligible_rate_limited(provider):
        return state.with_provider(keyring.expand_keys(provider))
    return state
