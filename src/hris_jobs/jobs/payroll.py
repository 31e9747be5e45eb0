"""Payroll calculation job.

Triggered by ``payroll/process`` with ``{payrollPeriodId, companyId,
initiatedBy}``. Cancellable by ``payroll/process.cancelled`` carrying the same
``payrollPeriodId`` (or the run id) and by a 10 minute timeout.

Steps::

    validate-period       period exists for the employer and is in draft
    fetch-employees       active employees of the employer
    calculate-payroll     per employee through the limiter, chunks of 10
    update-period-status  calculated | partial, with counts
    send-notification     email/send type payroll-processed to initiatedBy

Per-employee calculation (Indonesian payroll, simplified PPh21)::

    gross      = base_salary + allowances + overtime_hours × hourly_rate
    BPJS       = 1% health + 2% old-age + 1% pension        (of gross)
    PPh21      = max(0, gross × 12 − 60,000,000) × 5% / 12
    net        = gross − (BPJS + PPh21)

Amounts are :class:`~decimal.Decimal` end to end and unrounded.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from hris_jobs.core.errors import ValidationError
from hris_jobs.execution.context import StepContext
from hris_jobs.execution.models import BatchItemResult

HEALTH_INSURANCE_RATE = Decimal("0.01")
OLD_AGE_INSURANCE_RATE = Decimal("0.02")
PENSION_RATE = Decimal("0.01")
INCOME_TAX_RATE = Decimal("0.05")
INCOME_TAX_THRESHOLD = Decimal("60000000")
MONTHS_PER_YEAR = 12


def _dec(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class PayrollBreakdown:
    base_salary: Decimal
    allowances: Decimal
    overtime: Decimal
    gross_salary: Decimal
    bpjs_kesehatan: Decimal
    bpjs_jht: Decimal
    bpjs_jp: Decimal
    pph21: Decimal
    total_deductions: Decimal
    net_salary: Decimal

    def to_detail(self) -> dict[str, Any]:
        """Row for the payroll_details table."""
        return {
            "base_salary": self.base_salary,
            "allowances": self.allowances,
            "overtime": self.overtime,
            "gross_salary": self.gross_salary,
            "bpjs_kesehatan": self.bpjs_kesehatan,
            "bpjs_jht": self.bpjs_jht,
            "bpjs_jp": self.bpjs_jp,
            "pph21": self.pph21,
            "total_deductions": self.total_deductions,
            "net_salary": self.net_salary,
            "status": "calculated",
        }


def calculate_payroll(
    base_salary: Any,
    allowances: Any = 0,
    overtime_hours: Any = 0,
    hourly_rate: Any = 0,
) -> PayrollBreakdown:
    """Compute one employee's monthly payroll."""
    base = _dec(base_salary)
    allow = _dec(allowances)
    overtime_pay = _dec(overtime_hours) * _dec(hourly_rate)
    gross = base + allow + overtime_pay

    health = gross * HEALTH_INSURANCE_RATE
    old_age = gross * OLD_AGE_INSURANCE_RATE
    pension = gross * PENSION_RATE

    annual_gross = gross * MONTHS_PER_YEAR
    taxable = max(Decimal("0"), annual_gross - INCOME_TAX_THRESHOLD)
    pph21 = taxable * INCOME_TAX_RATE / MONTHS_PER_YEAR

    total = health + old_age + pension + pph21
    return PayrollBreakdown(
        base_salary=base,
        allowances=allow,
        overtime=overtime_pay,
        gross_salary=gross,
        bpjs_kesehatan=health,
        bpjs_jht=old_age,
        bpjs_jp=pension,
        pph21=pph21,
        total_deductions=total,
        net_salary=gross - total,
    )


async def process_payroll(ctx: StepContext) -> dict[str, Any]:
    payload = ctx.payload
    period_id = payload.get("payrollPeriodId")
    company_id = payload.get("companyId")
    initiated_by = payload.get("initiatedBy")
    store = ctx.store

    async def validate_period() -> dict[str, Any]:
        if not period_id or not company_id:
            raise ValidationError("payrollPeriodId and companyId are required")
        period = await store.get_payroll_period(period_id, company_id)
        if period is None:
            raise ValidationError("Payroll period not found").with_context(
                payroll_period_id=period_id
            )
        if period.get("status") != "draft":
            raise ValidationError("Payroll period is not in draft status").with_context(
                payroll_period_id=period_id, status=period.get("status")
            )
        return period

    period = await ctx.run("validate-period", validate_period)
    employees = await ctx.run("fetch-employees", store.list_active_employees, company_id)

    async def calculate_one(employee: dict[str, Any]) -> BatchItemResult:
        employee_id = employee["id"]
        compensation = await store.get_compensation(employee_id)
        if not compensation:
            return BatchItemResult.fail(employee_id, "No compensation data found")

        overtime_hours = await store.sum_overtime_hours(
            employee_id, period.get("period_start"), period.get("period_end")
        )
        breakdown = calculate_payroll(
            compensation.get("base_salary"),
            compensation.get("allowances"),
            overtime_hours,
            compensation.get("hourly_rate"),
        )
        await store.upsert_payroll_detail(period_id, employee_id, breakdown.to_detail())
        return BatchItemResult.ok(employee_id, netSalary=breakdown.net_salary)

    async def calculate_all() -> list[dict[str, Any]]:
        results = await ctx.services.limiter.for_each(
            employees,
            ctx.settings.payroll_chunk_size,
            calculate_one,
            item_id=lambda e: e["id"],
        )
        return [r.to_dict() for r in results]

    results = await ctx.run("calculate-payroll", calculate_all)
    success_count = sum(1 for r in results if r["success"])
    failed_count = len(results) - success_count

    async def update_period_status() -> dict[str, Any]:
        status = "calculated" if failed_count == 0 else "partial"
        await store.update_payroll_period(
            period_id,
            {
                "status": status,
                "processed_at": ctx.services.now().isoformat(),
                "processed_by": initiated_by,
                "employee_count": len(employees),
                "success_count": success_count,
                "failed_count": failed_count,
            },
        )
        return {"status": status}

    await ctx.run("update-period-status", update_period_status)

    async def send_notification() -> dict[str, Any]:
        await ctx.emit(
            "email/send",
            {
                "type": "payroll-processed",
                "to": initiated_by,
                "subject": "Payroll Processing Complete",
                "data": {
                    "periodId": period_id,
                    "totalEmployees": len(employees),
                    "successCount": success_count,
                    "failedCount": failed_count,
                    "period": f"{period.get('month')}/{period.get('year')}",
                },
            },
        )
        return {"notified": initiated_by}

    await ctx.run("send-notification", send_notification)

    return {
        "success": True,
        "periodId": period_id,
        "totalEmployees": len(employees),
        "successCount": success_count,
        "failedCount": failed_count,
        "results": results,
    }
