from __future__ import annotations


class LinkError(RuntimeError):
    """Base for every failure that ends a connect attempt in Failed."""


class CapabilityUnavailable(LinkError):
    pass


class DiscoveryFailed(LinkError):
    pass


class LinkEstablishmentFailed(LinkError):
    pass


class ServiceNotFound(LinkError):
    pass


class CharacteristicNotFound(LinkError):
    pass


class SubscriptionFailed(LinkError):
    pass
