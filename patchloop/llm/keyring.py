"""Credential rotation for a single provider.

State is a plain immutable value: every operation takes a ProviderState and
returns a new one, so the call executor can thread it through retries and
tests can build any scenario without global resets.

Selection rules:
  - only the first ``active_count`` credentials are eligible (keys are ramped
    in one at a time through ``expand_keys``);
  - the current credential is kept until ``cooldown_seconds`` have passed
    since the last switch, as long as it is not rate limited;
  - otherwise the least recently used non-rate-limited credential wins,
    ties broken by configuration order;
  - if every eligible credential is rate limited, the one with the fewest
    failures is used instead of failing.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping, Optional

logger = logging.getLogger("patchloop.llm.keyring")


class OutcomeKind(str, enum.Enum):
    """Result variant of one provider attempt."""
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class CredentialUsage:
    request_count: int = 0
    last_used_at: Optional[float] = None
    rate_limited: bool = False
    failures: int = 0


@dataclass(frozen=True)
class ProviderState:
    name: str
    credentials: tuple[str, ...]
    active_count: int = 1
    cooldown_seconds: float = 0.0
    last_switch: Optional[float] = None
    current: Optional[str] = None
    usage: Mapping[str, CredentialUsage] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def eligible(self) -> tuple[str, ...]:
        return self.credentials[: self.active_count]

    def usage_of(self, credential: str) -> CredentialUsage:
        return self.usage.get(credential, CredentialUsage())


def new_provider_state(
    name: str,
    credentials: list[str] | tuple[str, ...],
    initial_active: int = 1,
    cooldown_seconds: float = 0.0,
) -> ProviderState:
    creds = tuple(credentials)
    active = min(len(creds), max(1, initial_active)) if creds else 0
    return ProviderState(
        name=name,
        credentials=creds,
        active_count=active,
        cooldown_seconds=cooldown_seconds,
        usage=MappingProxyType({c: CredentialUsage() for c in creds}),
    )


def mask(credential: Optional[str]) -> str:
    """Render a credential for logs without leaking it."""
    if not credential:
        return "<none>"
    return f"...{credential[-4:]}" if len(credential) > 4 else "****"


def _available(state: ProviderState) -> list[str]:
    return [c for c in state.eligible if not state.usage_of(c).rate_limited]


def has_available(state: ProviderState) -> bool:
    """True when at least one eligible credential is not rate limited."""
    return bool(_available(state))


def all_eligible_rate_limited(state: ProviderState) -> bool:
    return bool(state.eligible) and not has_available(state)


def next_key(state: ProviderState, now: float) -> tuple[ProviderState, str]:
    """Pick the credential to use for the next request.

    Raises:
        ValueError: If the provider has no credentials at all.
    """
    eligible = state.eligible
    if not eligible:
        raise ValueError(f"Provider '{state.name}' has no credentials")

    available = _available(state)
    current = state.current

    if (
        current in available
        and state.last_switch is not None
        and now - state.last_switch < state.cooldown_seconds
    ):
        return state, current

    order = {cred: idx for idx, cred in enumerate(eligible)}
    if available:
        # Never-used credentials sort before any timestamp.
        chosen = min(
            available,
            key=lambda c: (
                state.usage_of(c).last_used_at is not None,
                state.usage_of(c).last_used_at or 0.0,
                order[c],
            ),
        )
    else:
        chosen = min(eligible, key=lambda c: (state.usage_of(c).failures, order[c]))
        logger.warning(
            "All %d active keys for '%s' are rate limited; using %s (fewest failures)",
            len(eligible), state.name, mask(chosen),
        )

    if chosen == current:
        return state, chosen

    logger.debug("Provider '%s' switching key %s -> %s", state.name, mask(current), mask(chosen))
    return replace(state, current=chosen, last_switch=now), chosen


def expand_keys(state: ProviderState) -> ProviderState:
    """Activate one more credential, up to the total configured."""
    if state.active_count >= len(state.credentials):
        return state
    logger.info(
        "Provider '%s' expanding active keys %d -> %d",
        state.name, state.active_count, state.active_count + 1,
    )
    return replace(state, active_count=state.active_count + 1)


def log_usage(
    state: ProviderState,
    credential: str,
    outcome: OutcomeKind,
    now: float,
) -> ProviderState:
    """Record one attempt against a credential."""
    previous = state.usage_of(credential)
    success = outcome is OutcomeKind.SUCCESS
    updated = CredentialUsage(
        request_count=previous.request_count + 1,
        last_used_at=now,
        rate_limited=False if success else (previous.rate_limited or outcome is OutcomeKind.RATE_LIMITED),
        failures=previous.failures if success else previous.failures + 1,
    )
    if updated.rate_limited and not previous.rate_limited:
        logger.warning("Key %s for '%s' flagged as rate limited", mask(credential), state.name)

    usage = dict(state.usage)
    usage[credential] = updated
    return replace(state, usage=MappingProxyType(usage))
