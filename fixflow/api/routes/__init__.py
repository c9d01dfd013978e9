"""HTTP routers."""

from . import metrics, ping, tickets, work_orders

__all__ = ["metrics", "ping", "tickets", "work_orders"]
