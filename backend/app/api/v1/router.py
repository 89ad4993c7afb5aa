"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    payments, settlements, payment_links, webhooks,
    catalog, notifications, admin_ops, admin_accounts
)

router = APIRouter()

# Wallets, top-ups and transfers
router.include_router(payments.router)

# Invoice / order settlement and payment links
router.include_router(settlements.router)
router.include_router(payment_links.router)

# Provider callbacks
router.include_router(webhooks.router)

# Companies, products, invoices, orders
router.include_router(catalog.router)
router.include_router(catalog.orders_router)

router.include_router(notifications.router)

# Operations
router.include_router(admin_ops.router)
router.include_router(admin_accounts.router)
