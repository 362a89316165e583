"""Subscription file: Pydantic model and YAML loader that seeds a SubscriptionRegistry."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from fanout.filtering.policy import compile_policy
from fanout.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class SubscriptionEntry(BaseModel):
    """One subscriber. filter_policy is compiled by the registry at registration."""

    name: str
    endpoint: str = Field(min_length=1)
    filter_policy: dict[str, Any] | None = None
    # Pre-acknowledged endpoints skip the external confirmation step
    confirmed: bool = False
    enabled: bool = True


class SubscriptionsFile(BaseModel):
    """Schema for config/subscriptions.yaml."""

    subscriptions: list[SubscriptionEntry] = Field(default_factory=list)


def load_subscriptions_file(path: Path) -> SubscriptionsFile:
    """Read and validate the subscription file. Raises on invalid YAML or validation error."""
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return SubscriptionsFile()
    if not isinstance(data, dict):
        raise ValueError(f"Subscription file must be a YAML object: {path}")
    return SubscriptionsFile.model_validate(data)


def apply_subscriptions(
    registry: SubscriptionRegistry, config: SubscriptionsFile
) -> dict[str, str]:
    """Register every enabled entry. Returns name -> subscription id.

    All policies are compiled before anything is registered; a bad policy registers nothing.
    """
    enabled: list[SubscriptionEntry] = []
    for entry in config.subscriptions:
        if entry.enabled:
            enabled.append(entry)
        else:
            logger.info("Subscription %s disabled, skipping", entry.name)
    policies = [compile_policy(entry.filter_policy) for entry in enabled]
    ids: dict[str, str] = {}
    for entry, policy in zip(enabled, policies):
        sub_id = registry.register(entry.endpoint, policy, name=entry.name)
        if entry.confirmed:
            registry.confirm(sub_id)
        ids[entry.name] = sub_id
    return ids
