"""HTTP surface."""

from regime_switch.api.routes import (
    get_installed_service,
    get_service,
    reset_service,
    router,
    set_service,
)

__all__ = ["get_installed_service", "get_service", "reset_service", "router", "set_service"]
