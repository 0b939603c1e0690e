from datetime import datetime
from typing import Optional
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from apps.jobs.services import JobService
from apps.outward_flow.models import InstalledPart, ServiceCostBreakdown, ServiceCostLine
from core.config import Settings, settings as default_settings
from core.database import get_db, transaction
from core.dependencies import SYSTEM_ACTOR

logger = logging.getLogger(__name__)


def _money(value: float) -> float:
    return round(value, 2)


class CostEngine:
    """Rolls installed parts, labor, overhead and tax up into one breakdown per job.

    The breakdown is recomputed from scratch on every call, so calling it
    twice over the same installed parts yields the same figures.
    """

    def __init__(self, db: Session, jobs: Optional[JobService] = None, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.jobs = jobs or JobService(db, self.settings)

    def get_breakdown(self, job_id: int) -> Optional[ServiceCostBreakdown]:
        return self.db.query(ServiceCostBreakdown).filter(
            ServiceCostBreakdown.service_request_id == job_id
        ).first()

    def calculate_service_cost(self, job_id: int, actor: str = SYSTEM_ACTOR) -> ServiceCostBreakdown:
        with transaction(self.db):
            job = self.jobs.get_job(job_id)
            installed = (
                self.db.query(InstalledPart)
                .filter(InstalledPart.service_request_id == job.id)
                .order_by(InstalledPart.id)
                .all()
            )

            parts_cost = _money(sum(part.total_cost for part in installed))
            parts_revenue = _money(sum(part.total_revenue or 0 for part in installed))
            parts_markup = _money(parts_revenue - parts_cost)

            labor_cost = _money(self.jobs.estimate_labor(job.id))
            labor_markup = _money(labor_cost * self.settings.LABOR_MARKUP_PERCENT / 100)
            labor_total = _money(labor_cost + labor_markup)

            overhead_cost = _money((parts_cost + labor_cost) * self.settings.OVERHEAD_PERCENT / 100)
            subtotal = _money(parts_revenue + labor_total + overhead_cost)
            tax_amount = _money(subtotal * self.settings.TAX_PERCENT / 100)
            total_cost = _money(subtotal + tax_amount)
            net_margin = _money(total_cost - (parts_cost + labor_cost + overhead_cost))
            margin_percent = _money(net_margin / total_cost * 100) if total_cost > 0 else 0.0

            breakdown = self.get_breakdown(job.id)
            if breakdown is None:
                breakdown = ServiceCostBreakdown(service_request_id=job.id)
                self.db.add(breakdown)

            breakdown.parts_cost = parts_cost
            breakdown.parts_markup = parts_markup
            breakdown.parts_total = parts_revenue
            breakdown.labor_cost = labor_cost
            breakdown.labor_markup = labor_markup
            breakdown.labor_total = labor_total
            breakdown.overhead_cost = overhead_cost
            breakdown.subtotal = subtotal
            breakdown.tax_percent = self.settings.TAX_PERCENT
            breakdown.tax_amount = tax_amount
            breakdown.discount_amount = 0.0
            breakdown.total_cost = total_cost
            breakdown.net_margin = net_margin
            breakdown.margin_percent = margin_percent
            breakdown.calculated_by = actor
            breakdown.calculated_at = datetime.utcnow()
            breakdown.lines = [
                ServiceCostLine(
                    installed_part_id=part.id,
                    spare_part_id=part.spare_part_id,
                    part_name=part.spare_part.name,
                    quantity=part.quantity,
                    unit_cost=part.unit_cost,
                    total_cost=part.total_cost,
                    selling_price=part.selling_price,
                    total_revenue=part.total_revenue,
                )
                for part in installed
            ]
            self.db.flush()

            self.jobs.update_costs(job.id, parts_cost=parts_cost, labor_total=labor_total, actual_cost=total_cost)

        logger.info(f"Service cost for job {job.job_number}: total {total_cost}, margin {margin_percent}%")
        return breakdown


# Dependency injection
def get_cost_engine(db: Session = Depends(get_db)) -> CostEngine:
    return CostEngine(db)
