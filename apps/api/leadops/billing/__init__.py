from leadops.billing.models import SeatPlan, SeatPlanChange

__all__ = ["SeatPlan", "SeatPlanChange"]
