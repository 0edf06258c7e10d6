"""Exception types shared across CoinGuard."""

from __future__ import annotations


class GatewayError(Exception):
    """Transient failure talking to the market/order gateway.

    The scan loop treats these as "skip this unit of work".
    """


class GatewayTimeoutError(GatewayError):
    """A gateway call did not complete within its timeout."""


class MalformedResponseError(GatewayError):
    """The gateway answered with a payload that could not be interpreted."""


class RiskInvariantError(Exception):
    """The risk guard was asked to record something it considers impossible.

    Unlike gateway errors these indicate a programming error and are never
    absorbed silently.
    """
