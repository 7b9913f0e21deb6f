"""
Customer notifications for RMA status changes.

One template per forward transition: confirmation (case raised), sent to
service centre, ready for dispatch (carries the delivery OTP) and delivered.
Each email lists only the products that just reached the template's status;
products elsewhere in the case are never mentioned.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from rmadesk.errors import EmailDeliveryError, ValidationError
from rmadesk.mailer import EmailMessage
from rmadesk.observability.metrics_collector import metrics_collector
from rmadesk.observability.structured_logger import app_logger
from rmadesk.schemas import ProductLineItem, RMACase, Status


_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent.joinpath("templates", "email"))),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    trim_blocks=True,
    lstrip_blocks=True,
)


class NotificationService:
    """Builds and sends the per-stage customer emails."""

    TEMPLATES = {
        Status.PROCESSING: {
            "subject": "RMA Material Received",
            "message": "We have received your return request. We will process your request and update you soon.",
        },
        Status.IN_SERVICE_CENTRE: {
            "subject": "RMA Products Sent to Service Centre",
            "message": (
                "Your return products have been sent to our service centre for processing. "
                "We will notify you once your items are ready for dispatch."
            ),
        },
        Status.READY: {
            "subject": "RMA Products Ready for Dispatch",
            "message": (
                "Your return products are now ready for dispatch. "
                "Please provide the OTP when receiving your items."
            ),
        },
        Status.DELIVERED: {
            "subject": "RMA Products Delivered",
            "message": "Your return products have been successfully delivered. Thank you for your business.",
        },
    }

    def __init__(self, sender, company_name: str = "Support Team"):
        self.sender = sender
        self.company_name = company_name

    @classmethod
    def compose(
        cls,
        case: RMACase,
        stage: Status,
        products: Iterable[ProductLineItem],
        otp: Optional[str] = None,
        signature: str = "Support Team",
    ) -> EmailMessage:
        """
        Build the email for ``stage`` about ``products``.

        Products not currently at ``stage`` are dropped, so a caller passing
        the whole case still only reveals the moved ones. The ready template
        requires the batch OTP.
        """
        stage = Status(stage)
        template = cls.TEMPLATES[stage]
        listed = [p for p in products if p.status == stage]
        if stage == Status.READY and not otp:
            raise ValidationError("ready notification needs the delivery OTP")
        if stage != Status.READY:
            otp = None

        name = case.contact_name or case.contact_company or case.contact_email
        context = {
            "name": name,
            "rma_id": case.id,
            "message": template["message"],
            "products": [cls._product_context(p) for p in listed],
            "otp": otp,
            "signature": signature,
            "subject": template["subject"],
        }
        return EmailMessage(
            to_email=case.contact_email,
            to_name=name,
            subject=template["subject"],
            text=_env.get_template("rma_update.txt").render(**context),
            html=_env.get_template("rma_update.html").render(**context),
        )

    @staticmethod
    def _product_context(product: ProductLineItem) -> Dict[str, Any]:
        return {
            "brand": product.brand or "N/A",
            "model_number": product.model_number or "N/A",
            "serial_number": product.serial_number or "N/A",
            "problems_reported": product.problems_reported,
            "remark": product.remark,
            "service_centre": product.service_centre_label,
        }

    def notify(
        self,
        case: RMACase,
        stage: Status,
        products: List[ProductLineItem],
        otp: Optional[str] = None,
        enabled: bool = True,
    ) -> Dict[str, Any]:
        """
        Send the ``stage`` email and report the outcome without raising.

        The case write has already happened when this runs; a delivery failure
        is returned as ``{"sent": False, "error": ...}`` for the operator.
        """
        if not enabled:
            metrics_collector.increment_counter('emails_skipped_total')
            return {"sent": False, "skipped": True, "reason": "email notifications disabled"}
        if not case.contact_email:
            metrics_collector.increment_counter('email_failures_total')
            app_logger.warning("RMA has no contact email; notification not sent", rma_id=case.id, stage=stage.value)
            return {"sent": False, "error": "customer has no email address"}

        message = self.compose(case, stage, products, otp=otp, signature=self.company_name)
        try:
            receipt = self.sender.send(message)
        except EmailDeliveryError as e:
            app_logger.warning(
                "Customer notification failed; status change kept",
                rma_id=case.id,
                stage=stage.value,
                error=str(e),
                details=e.details,
            )
            return {"sent": False, "error": str(e), "details": e.details}
        return {"sent": True, "provider": receipt.get("provider"), "message_id": receipt.get("message_id")}
