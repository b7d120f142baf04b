"""Tests for patchloop/llm/keyring.py: per-provider credential rotation."""

from __future__ import annotations

import pytest

from patchloop.llm.keyring import (
    CredentialUsage,
    OutcomeKind,
    all_eligible_rate_limited,
    expand_keys,
    has_available,
    log_usage,
    mask,
    new_provider_state,
    next_key,
)


def _state(creds=("k1", "k2", "k3"), active=3, cooldown=30.0):
    return new_provider_state("groq", list(creds), initial_active=active, cooldown_seconds=cooldown)


class TestNewProviderState:
    def test_initial_active_clamped(self):
        assert _state(active=10).active_count == 3
        assert _state(active=0).active_count == 1

    def test_no_credentials(self):
        state = new_provider_state("gemini", [])
        assert state.active_count == 0
        assert state.eligible == ()
        assert not has_available(state)

    def test_usage_initialized(self):
        state = _state()
        assert state.usage_of("k2") == CredentialUsage()

    def test_next_key_without_credentials_raises(self):
        with pytest.raises(ValueError, match="no credentials"):
            next_key(new_provider_state("gemini", []), now=0.0)


class TestNextKey:
    def test_first_pick_is_first_credential(self):
        state, key = next_key(_state(), now=100.0)
        assert key == "k1"
        assert state.current == "k1"
        assert state.last_switch == 100.0

    def test_sticky_within_cooldown(self):
        state, key = next_key(_state(), now=100.0)
        state = log_usage(state, key, OutcomeKind.SUCCESS, now=100.0)
        state, again = next_key(state, now=110.0)
        assert again == "k1"
        assert state.last_switch == 100.0

    def test_rotates_to_least_recently_used_after_cooldown(self):
        state, key = next_key(_state(), now=100.0)
        state = log_usage(state, key, OutcomeKind.SUCCESS, now=100.0)
        state, key = next_key(state, now=131.0)
        assert key == "k2"
        state = log_usage(state, key, OutcomeKind.SUCCESS, now=131.0)
        state, key = next_key(state, now=162.0)
        assert key == "k3"
        state = log_usage(state, key, OutcomeKind.SUCCESS, now=162.0)
        state, key = next_key(state, now=193.0)
        assert key == "k1"

    def test_rate_limited_current_is_left_even_within_cooldown(self):
        state, key = next_key(_state(), now=100.0)
        state = log_usage(state, key, OutcomeKind.RATE_LIMITED, now=101.0)
        state, key = next_key(state, now=102.0)
        assert key == "k2"
        assert state.current == "k2"

    def test_only_eligible_keys_are_used(self):
        state = _state(active=1)
        state, key = next_key(state, now=100.0)
        state = log_usage(state, key, OutcomeKind.SUCCESS, now=100.0)
        state, key = next_key(state, now=500.0)
        assert key == "k1"

    def test_all_rate_limited_falls_back_to_fewest_failures(self):
        state = _state(active=2)
        state = log_usage(state, "k1", OutcomeKind.RATE_LIMITED, now=1.0)
        state = log_usage(state, "k1", OutcomeKind.RATE_LIMITED, now=2.0)
        state = log_usage(state, "k2", OutcomeKind.RATE_LIMITED, now=3.0)
        assert all_eligible_rate_limited(state)
        state, key = next_key(state, now=4.0)
        assert key == "k2"

    def test_input_state_is_not_mutated(self):
        original = _state()
        next_key(original, now=100.0)
        assert original.current is None
        assert original.last_switch is None


class TestLogUsage:
    def test_success_counts_and_clears_flag(self):
        state = _state()
        state = log_usage(state, "k1", OutcomeKind.RATE_LIMITED, now=1.0)
        assert state.usage_of("k1").rate_limited
        state = log_usage(state, "k1", OutcomeKind.SUCCESS, now=2.0)
        usage = state.usage_of("k1")
        assert usage.request_count == 2
        assert usage.last_used_at == 2.0
        assert usage.rate_limited is False
        assert usage.failures == 1

    def test_transient_counts_failure_without_flag(self):
        state = log_usage(_state(), "k1", OutcomeKind.TRANSIENT, now=1.0)
        usage = state.usage_of("k1")
        assert usage.failures == 1
        assert usage.rate_limited is False

    def test_usage_is_read_only(self):
        state = log_usage(_state(), "k1", OutcomeKind.SUCCESS, now=1.0)
        with pytest.raises(TypeError):
            state.usage["k1"] = CredentialUsage()


class TestExpandKeys:
    def test_expands_by_one(self):
        state = expand_keys(_state(active=1))
        assert state.active_count == 2
        assert state.eligible == ("k1", "k2")

    def test_stops_at_total(self):
        state = _state(active=3)
        assert expand_keys(state) is state

    def test_expansion_makes_key_available(self):
        state = _state(active=1)
        state = log_usage(state, "k1", OutcomeKind.RATE_LIMITED, now=1.0)
        assert not has_available(state)
        state = expand_keys(state)
        assert has_available(state)
        _, key = next_key(state, now=2.0)
        assert key == "k2"


class TestMask:
    def test_masks_credentials(self):
        assert mask("sk-abcdef1234") == "...1234"
        assert mask("abc") == "****"
        assert mask(None) == "<none>"
