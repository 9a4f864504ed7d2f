"""Client identity derivation for the failure counter keys."""
from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def client_identity(real_client_ip: str, *, ipv6_policy: str = "keep") -> str:
    """Turn the trusted real-client-IP value into a store-safe key.

    Periods are not allowed in store item names, so every ``.`` becomes ``-``.
    Nothing else is normalized: no trimming and no case folding. An empty
    value yields an empty key.

    IPv6 addresses carry colons instead of periods. With ``ipv6_policy="keep"``
    they are left in the key as-is; ``"substitute"`` replaces them with ``-``
    as well.
    """

    identity = real_client_ip.replace(".", "-")
    if ":" in identity:
        if ipv6_policy == "substitute":
            return identity.replace(":", "-")
        logger.warning("Client identity %s keeps ':' characters", identity)
    return identity
