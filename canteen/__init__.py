"""
                Canteen Orders

Inventory-aware ordering backend for a restaurant: per-user carts,
atomic order placement against finite stock, and an order status
machine with compensating stock adjustments.
"""

__version__ = "1.0.0"
