"""Routers package."""

from . import (
    health,
    auth,
    client_balance,
    restaurant_packages,
    restaurant_groups,
    subscriptions,
    notifications,
    restaurant_info,
    account,
    admin_directory,
)
