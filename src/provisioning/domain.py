"""Provisioning bounded context: eSIM Order Fulfillment and Reconciliation.

Takes paid eSIM orders, buys the profile from the healthiest wholesale
supplier, reconciles asynchronous supplier callbacks and recovers orders
that were left mid-flight. Uses CQRS: orders, providers and correlation
records are plain aggregates persisted through repositories.
"""

from protean.domain import Domain

from provisioning.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

provisioning = Domain(name="provisioning")
