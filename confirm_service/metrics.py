"""Prometheus counters for the confirmation workflow."""

from __future__ import annotations

from prometheus_client import Counter

TOKENS_ISSUED = Counter(
    "confirm_tokens_issued_total",
    "Confirmation tokens minted for newly registered accounts.",
)
REDEMPTIONS = Counter(
    "confirm_redemptions_total",
    "Confirmation link redemptions by outcome.",
    ["outcome"],
)
DELIVERY_FAILURES = Counter(
    "confirm_delivery_failures_total",
    "Confirmation e-mails that could not be handed to the mail transport.",
)
INTERRUPTS = Counter(
    "confirm_interrupts_total",
    "Requests halted because the account is not confirmed.",
    ["checkpoint"],
)
