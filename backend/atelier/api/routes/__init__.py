"""API routers."""

from fastapi import APIRouter

from . import (
    admin_blogs,
    admin_clients,
    admin_gift_cards,
    admin_orders,
    admin_products,
    admin_stats,
    admin_workshops,
    blogs,
    gift_cards,
    health,
    orders,
    products,
    square,
    square_webhook,
    stripe_webhook,
    workshops,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(products.router, prefix="/products", tags=["products"])
router.include_router(orders.router, prefix="/orders", tags=["orders"])
router.include_router(workshops.router, prefix="/workshops", tags=["workshops"])
router.include_router(gift_cards.router, prefix="/gift-cards", tags=["gift-cards"])
router.include_router(blogs.router, prefix="/blogs", tags=["blogs"])
router.include_router(
    admin_products.router, prefix="/admin/products", tags=["admin-products"]
)
router.include_router(
    admin_orders.router, prefix="/admin/orders", tags=["admin-orders"]
)
router.include_router(
    admin_workshops.router, prefix="/admin/workshops", tags=["admin-workshops"]
)
router.include_router(
    admin_gift_cards.router, prefix="/admin/gift-cards", tags=["admin-gift-cards"]
)
router.include_router(
    admin_clients.router, prefix="/admin/clients", tags=["admin-clients"]
)
router.include_router(
    admin_blogs.router, prefix="/admin/blogs", tags=["admin-blogs"]
)
router.include_router(admin_stats.router, prefix="/admin/stats", tags=["admin-stats"])
router.include_router(square.router, prefix="/square", tags=["square"])
router.include_router(square_webhook.router, prefix="/square", tags=["webhooks"])
router.include_router(stripe_webhook.router, tags=["webhooks"])
