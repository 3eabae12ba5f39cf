from decimal import Decimal

from clinicdesk.models.base import ApiModel, Money


class DashboardStats(ApiModel):
    """Aggregates returned by ``GET /patients/dashboard``."""

    total_patients: int = 0
    todays_appointments: int = 0
    total_revenue: Money = Decimal("0")
    pending_amount: Money = Decimal("0")
