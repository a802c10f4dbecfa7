"""HTTP notifier: Discord-style embeds for operators, a mailer hook for customers."""

import httpx
import structlog

from provisioning.notify.port import NotifierPort

logger = structlog.get_logger(__name__)

_ALERT_COLOR = 0xE74C3C


class WebhookNotifier(NotifierPort):
    def __init__(
        self,
        alert_url: str | None,
        delivery_url: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.alert_url = alert_url
        self.delivery_url = delivery_url
        self.client = client or httpx.Client(timeout=5.0)

    def send_esim_delivery(self, order) -> None:
        if not self.delivery_url:
            logger.info("esim_delivery_skipped", order_id=str(order.id), reason="no delivery url")
            return
        response = self.client.post(
            self.delivery_url,
            json={
                "order_id": str(order.id),
                "email": order.customer_email,
                "name": order.customer_name,
                "iccid": order.esim_iccid,
                "activation_code": order.esim_activation_code,
                "qr_code": order.esim_qr_code,
            },
        )
        response.raise_for_status()

    def send_alert(self, title: str, message: str, fields: dict | None = None) -> None:
        if not self.alert_url:
            logger.info("alert_skipped", title=title, reason="no alert url")
            return
        embed = {
            "title": title,
            "description": message,
            "color": _ALERT_COLOR,
            "fields": [{"name": k, "value": str(v), "inline": True} for k, v in (fields or {}).items()],
        }
        response = self.client.post(self.alert_url, json={"embeds": [embed]})
        response.raise_for_status()
