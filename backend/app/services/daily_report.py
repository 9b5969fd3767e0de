"""Per-day delivery and cash summary."""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional

from app.models.delivery import DailyReport, DeliveryRecord, DeliveryStatus
from app.services.delivery_store import DeliveryStore
from app.services.transitions import money

SETTLED_STATUSES = frozenset({DeliveryStatus.DELIVERED.value, DeliveryStatus.PICKUP.value})
VOID_STATUSES = frozenset({DeliveryStatus.FAILED.value, DeliveryStatus.CANCELLED.value})

_STATUS_EMOJI = {
    DeliveryStatus.DELIVERED.value: "✅",
    DeliveryStatus.FAILED.value: "❌",
    DeliveryStatus.PENDING.value: "⏳",
    DeliveryStatus.PICKUP.value: "📦",
}


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _fcfa(value: float) -> str:
    return f"{int(value)} FCFA" if float(value).is_integer() else f"{value:.2f} FCFA"


def summarize(date: str, deliveries: List[DeliveryRecord]) -> DailyReport:
    counts = Counter(delivery.status for delivery in deliveries)
    billable = [delivery for delivery in deliveries if delivery.status not in VOID_STATUSES]
    settled = [delivery for delivery in deliveries if delivery.status in SETTLED_STATUSES]

    total_due = money(sum(delivery.amount_due for delivery in billable))
    total_collected = money(sum(delivery.amount_paid + delivery.delivery_fee for delivery in settled))
    total_fees = money(sum(delivery.delivery_fee for delivery in deliveries))
    net_to_group = money(
        sum(delivery.amount_paid for delivery in deliveries if delivery.status == DeliveryStatus.DELIVERED.value)
    )

    report = DailyReport(
        date=date,
        total=len(deliveries),
        counts_by_status=dict(counts),
        total_due=total_due,
        total_collected=total_collected,
        total_fees=total_fees,
        net_to_group=net_to_group,
        total_remaining=money(total_due - total_collected),
        deliveries=deliveries,
    )
    report.text = render_text(report)
    return report


def render_text(report: DailyReport) -> str:
    counts = report.counts_by_status
    lines = [
        f"📊 RAPPORT QUOTIDIEN - {report.date}",
        "=" * 50,
        "",
        "📦 STATISTIQUES:",
        f"   Total de livraisons: {report.total}",
        f"   ✅ Livrées: {counts.get(DeliveryStatus.DELIVERED.value, 0)}",
        f"   ⏳ En attente: {counts.get(DeliveryStatus.PENDING.value, 0)}",
        f"   📦 Pickup: {counts.get(DeliveryStatus.PICKUP.value, 0)}",
        f"   ❌ Échecs: {counts.get(DeliveryStatus.FAILED.value, 0)}",
        f"   💰 Total dû: {_fcfa(report.total_due)}",
        f"   💵 Total collecté: {_fcfa(report.total_collected)}",
        f"   🚚 Frais de livraison: {_fcfa(report.total_fees)}",
        f"   🏦 Net à reverser: {_fcfa(report.net_to_group)}",
        f"   💸 Restant: {_fcfa(report.total_remaining)}",
        "",
    ]

    if not report.deliveries:
        lines.append("Aucune livraison enregistrée pour cette date.")
        return "\n".join(lines)

    lines.append(f"📋 DÉTAILS DES LIVRAISONS ({len(report.deliveries)}):")
    lines.append("")
    for index, delivery in enumerate(report.deliveries, start=1):
        emoji = _STATUS_EMOJI.get(delivery.status, "📋")
        amount_line = f"   💰 {_fcfa(delivery.amount_due)}"
        if delivery.amount_paid > 0:
            amount_line += f" (Payé: {_fcfa(delivery.amount_paid)})"
        lines.extend(
            [
                f"{index}. Livraison #{delivery.id} {emoji}",
                f"   📱 {delivery.phone}",
                f"   📦 {delivery.items or '-'}",
                amount_line,
                f"   📍 {delivery.quartier or 'Non spécifié'}",
                f"   📊 {delivery.status}",
                "",
            ]
        )
    return "\n".join(lines).rstrip() + "\n"


def build_daily_report(store: DeliveryStore, date: Optional[str] = None) -> DailyReport:
    """Summary of the deliveries created on `date` (UTC, defaults to today)."""
    target = date or _today()
    return summarize(target, store.list_deliveries(date=target, limit=10_000))
