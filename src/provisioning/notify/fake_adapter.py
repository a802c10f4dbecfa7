"""In-memory notifier that records every message (dev and tests)."""

from provisioning.notify.port import NotifierPort


class FakeNotifier(NotifierPort):
    def __init__(self) -> None:
        self.should_fail: bool = False
        self.deliveries: list[dict] = []
        self.alerts: list[dict] = []

    def configure(self, should_fail: bool) -> None:
        self.should_fail = should_fail

    def send_esim_delivery(self, order) -> None:
        if self.should_fail:
            raise ConnectionError("Mail service unavailable")
        self.deliveries.append(
            {
                "order_id": str(order.id),
                "email": order.customer_email,
                "iccid": order.esim_iccid,
            }
        )

    def send_alert(self, title: str, message: str, fields: dict | None = None) -> None:
        if self.should_fail:
            raise ConnectionError("Alert webhook unavailable")
        self.alerts.append({"title": title, "message": message, "fields": fields or {}})
