"""
Reporting Module

Portfolio figures for the dashboard and reports pages, and a per-loan
portfolio listing that can be exported as a dict, JSON or CSV.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import csv
import io
import json

from .alerts import AlertClassifier
from .clients import ClientManager
from .lifecycle import LoanStatus
from .loans import LoanManager, LoanView
from .money import ZERO, round_money
from .schedule import PaymentPlan


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.metadata:
            self.metadata = {
                "row_count": len(self.data),
                "currency": "NGN",
            }


class ReportingEngine:
    """
    Portfolio reporting over loans, clients and payment alerts
    """

    def __init__(
        self,
        loan_manager: LoanManager,
        client_manager: ClientManager,
        alert_classifier: Optional[AlertClassifier] = None
    ):
        self.loan_manager = loan_manager
        self.client_manager = client_manager
        self.alert_classifier = alert_classifier

    def portfolio_summary(self, today: Optional[date] = None) -> ReportResult:
        """
        Dashboard statistics

        total_disbursed counts principal on disbursed and completed loans,
        total_repaid sums what has been paid on every loan, and
        pending_amount is what is still owed on disbursed loans.
        """
        loans = self.loan_manager.all_loans()

        total_disbursed = sum(
            (loan.loan_amount for loan in loans
             if loan.status in (LoanStatus.DISBURSED, LoanStatus.COMPLETED)),
            ZERO
        )
        total_repaid = sum((loan.total_paid for loan in loans), ZERO)
        pending_amount = sum(
            (loan.balance for loan in loans if loan.status == LoanStatus.DISBURSED),
            ZERO
        )

        summary = {
            "total_disbursed": round_money(total_disbursed),
            "total_repaid": round_money(total_repaid),
            "pending_amount": round_money(pending_amount),
            "total_clients": self.client_manager.count_clients(),
            "total_loans": len(loans),
            "loans_by_status": {
                status.value: sum(1 for loan in loans if loan.status == status)
                for status in LoanStatus
            },
            "loans_by_plan": {
                plan.value: sum(1 for loan in loans if loan.payment_plan == plan)
                for plan in PaymentPlan
            },
        }
        if self.alert_classifier:
            summary["alerts"] = self.alert_classifier.alert_counts(today)

        return ReportResult(
            report_id="portfolio_summary",
            generated_at=datetime.now(timezone.utc),
            data=[summary],
            totals=summary,
        )

    def recent_loans(self, limit: int = 5) -> List[LoanView]:
        return self.loan_manager.list_loans(limit=limit)

    def loan_portfolio_report(self, status: Optional[Union[str, LoanStatus]] = None) -> ReportResult:
        """One row per loan with client, amounts and progress"""
        rows = []
        for view in self.loan_manager.list_loans(status=status):
            loan = view.loan
            rows.append({
                "loan_id": loan.id,
                "client_name": view.client_name or "",
                "status": loan.status.value,
                "payment_plan": loan.payment_plan.value,
                "loan_amount": loan.loan_amount,
                "interest_rate": loan.interest_rate,
                "total_due": loan.total_due,
                "total_paid": loan.total_paid,
                "balance": loan.balance,
                "next_payment_date": loan.next_payment_date.isoformat() if loan.next_payment_date else "",
            })

        totals = {
            "loan_amount": sum((row["loan_amount"] for row in rows), ZERO),
            "total_due": sum((row["total_due"] for row in rows), ZERO),
            "total_paid": sum((row["total_paid"] for row in rows), ZERO),
            "balance": sum((row["balance"] for row in rows), ZERO),
        }
        return ReportResult(
            report_id="loan_portfolio",
            generated_at=datetime.now(timezone.utc),
            data=rows,
            totals=totals,
        )

    def export_report(self, result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
        """
        Render a report as a plain dict, a JSON string or CSV text
        """
        if format == ReportFormat.DICT:
            return {
                "report_id": result.report_id,
                "generated_at": result.generated_at.isoformat(),
                "data": result.data,
                "totals": result.totals,
                "metadata": result.metadata,
            }

        elif format == ReportFormat.JSON:
            export_dict = self.export_report(result, ReportFormat.DICT)
            return json.dumps(export_dict, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()

            if result.data:
                headers = list(result.data[0].keys())
                writer = csv.DictWriter(output, fieldnames=headers)
                writer.writeheader()
                for row in result.data:
                    writer.writerow(row)

            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")
