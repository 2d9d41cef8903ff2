"""Built-in regional policy preset.

Tokens look like ``US-abcd123`` or ``EU-jhte456``. US-class clients get a
request budget per fixed window; EU-class clients must wait a cooldown
between admitted calls. Other tokens fall under the unmatched policy.
"""

from __future__ import annotations

from rate_gate.core.config import AppSettings, PolicySettings
from rate_gate.services.policy_binder import (
    ClientClassMatcher,
    PolicyBinder,
    UnmatchedPolicy,
    region_classifier,
)
from rate_gate.services.rules import Cooldown, FixedWindowCount, RuleSet


def build_regional_binder(
    policy: PolicySettings, app_settings: AppSettings
) -> PolicyBinder:
    """Create a binder with the US/EU client-class policies registered.

    Args:
        policy: Preset parameters.
        app_settings: Supplies the unmatched policy.

    Returns:
        Ready-to-use PolicyBinder.
    """

    binder = PolicyBinder(
        classifier=region_classifier,
        unmatched=UnmatchedPolicy(app_settings.unmatched_policy),
    )
    binder.register(
        ClientClassMatcher("US"),
        RuleSet.of(
            "us-request-budget",
            FixedWindowCount(
                max_calls=policy.us_max_calls,
                window_seconds=policy.us_window_seconds,
            ),
        ),
    )
    binder.register(
        ClientClassMatcher("EU"),
        RuleSet.of(
            "eu-cooldown",
            Cooldown(min_interval_seconds=policy.eu_cooldown_seconds),
        ),
    )
    return binder
