"""FSM package for payment state management."""

from app.fsm.states import PaymentStatus, GatewayStatus, ReconcileSource, map_gateway_status

__all__ = ["PaymentStatus", "GatewayStatus", "ReconcileSource", "map_gateway_status"]
