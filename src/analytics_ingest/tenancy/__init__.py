"""Tenant configuration cache and per-tenant connection routing."""

from analytics_ingest.tenancy.registry import RoutingTarget, Tenant, TenantRegistry
from analytics_ingest.tenancy.router import ConnectionRouter, PoolState

__all__ = [
    "ConnectionRouter",
    "PoolState",
    "RoutingTarget",
    "Tenant",
    "TenantRegistry",
]
