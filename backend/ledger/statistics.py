"""
LEDGER: TRANSACTION STATISTICS (READ MODELS)

Read-only aggregations over stored transactions.

NO writes. NO mutations. Pure query projections.

Usage:
    service = TransactionStatisticsService(store)
    stats = await service.get_transaction_stats(agency_id=2)
    by_month = await service.get_transaction_stats_by_period("MONTH")
"""

from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import logging

from ledger.enums import TransactionStatus, StatsPeriod
from ledger.financial_precision import to_decimal, to_float, safe_divide, ZERO

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_LIMIT = 10


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min)


def period_key(moment: datetime, period: StatsPeriod) -> str:
    """
    Bucket label for a timestamp.

    DAY -> YYYY-MM-DD, WEEK -> YYYY-WW (week 1 starts on January 1st),
    MONTH -> YYYY-MM.
    """
    if period == StatsPeriod.DAY:
        return moment.strftime("%Y-%m-%d")
    if period == StatsPeriod.WEEK:
        week = (moment.timetuple().tm_yday - 1) // 7 + 1
        return f"{moment.year:04d}-{week:02d}"
    return moment.strftime("%Y-%m")


class _Bucket:
    """Running count/sum for one breakdown key"""

    __slots__ = ("count", "total")

    def __init__(self):
        self.count = 0
        self.total = ZERO

    def add(self, amount: Decimal):
        self.count += 1
        self.total += amount

    def as_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "total": to_float(self.total)}


class TransactionStatisticsService:
    """
    Read-only transaction reporting.

    All filters are inclusive and optional; an empty selection yields zeroed
    aggregates and empty breakdown maps.
    """

    def __init__(self, store, clock: Callable[[], datetime] = datetime.utcnow):
        self.store = store
        self.clock = clock

    # =========================================================================
    # FULL STATISTICS
    # =========================================================================

    async def get_transaction_stats(
        self,
        agency_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Aggregate transactions of every status.

        Returns totals (count/sum/avg/min/max), counts by status, per-type and
        per-agency-name breakdowns, and the average of COMPLETED amounts.
        end_date includes the whole end day.
        """
        logger.debug(f"[STATS] agency={agency_id}, start={start_date}, end={end_date}")

        transactions = await self.store.find_transactions(
            agency_id=agency_id,
            start=_day_start(start_date) if start_date else None,
            end=_day_start(end_date + timedelta(days=1)) if end_date else None,
        )

        total_amount = ZERO
        min_amount: Optional[Decimal] = None
        max_amount: Optional[Decimal] = None
        status_counts = {s.value: 0 for s in TransactionStatus}
        completed_sum = ZERO
        by_type: Dict[str, _Bucket] = OrderedDict()
        by_agency_id: Dict[Any, _Bucket] = OrderedDict()

        for txn in transactions:
            amount = to_decimal(txn.get("amount", 0))
            total_amount += amount
            min_amount = amount if min_amount is None else min(min_amount, amount)
            max_amount = amount if max_amount is None else max(max_amount, amount)

            txn_status = txn.get("status")
            if txn_status in status_counts:
                status_counts[txn_status] += 1
            if txn_status == TransactionStatus.COMPLETED.value:
                completed_sum += amount

            by_type.setdefault(txn.get("transaction_type"), _Bucket()).add(amount)
            by_agency_id.setdefault(txn.get("agency_id"), _Bucket()).add(amount)

        agencies = await self.store.get_agencies(by_agency_id.keys())
        by_agency: Dict[str, Dict[str, Any]] = {}
        for agency_key, bucket in by_agency_id.items():
            agency = agencies.get(agency_key)
            if agency is None:
                # Same behaviour as an inner join on agencies
                continue
            name = agency.get("agency_name")
            if name in by_agency:
                by_agency[name]["count"] += bucket.count
                by_agency[name]["total"] = to_float(to_decimal(by_agency[name]["total"]) + bucket.total)
            else:
                by_agency[name] = bucket.as_dict()

        count = len(transactions)
        completed_count = status_counts[TransactionStatus.COMPLETED.value]

        return {
            "total_transactions": count,
            "total_amount": to_float(total_amount),
            "avg_amount": to_float(safe_divide(total_amount, count)),
            "min_amount": to_float(min_amount if min_amount is not None else ZERO),
            "max_amount": to_float(max_amount if max_amount is not None else ZERO),
            "successful_count": completed_count,
            "failed_count": status_counts[TransactionStatus.FAILED.value],
            "pending_count": status_counts[TransactionStatus.PENDING.value],
            "by_transaction_type": {k: b.as_dict() for k, b in by_type.items()},
            "by_agency": by_agency,
            "completed_avg_amount": to_float(safe_divide(completed_sum, completed_count)),
            "filters": {
                "agency_id": agency_id,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
        }

    # =========================================================================
    # SIMPLE STATISTICS
    # =========================================================================

    async def get_transaction_stats_simple(self) -> Dict[str, Any]:
        """COMPLETED totals overall and for today."""
        transactions = await self.store.find_transactions(status=TransactionStatus.COMPLETED.value)
        today = self.clock().date()

        total_amount = ZERO
        today_count = 0
        today_amount = ZERO
        for txn in transactions:
            amount = to_decimal(txn.get("amount", 0))
            total_amount += amount
            if txn["transaction_date"].date() == today:
                today_count += 1
                today_amount += amount

        return {
            "total_transactions": len(transactions),
            "total_amount": to_float(total_amount),
            "today_transactions": today_count,
            "today_amount": to_float(today_amount),
        }

    # =========================================================================
    # STATISTICS BY PERIOD
    # =========================================================================

    async def get_transaction_stats_by_period(
        self,
        period: str = StatsPeriod.MONTH.value,
        limit: int = DEFAULT_PERIOD_LIMIT
    ) -> List[Dict[str, Any]]:
        """
        COMPLETED transactions grouped by DAY, WEEK or MONTH, most recent
        periods first. Unknown period names group by MONTH.
        """
        try:
            resolved = StatsPeriod(str(period).upper())
        except ValueError:
            resolved = StatsPeriod.MONTH

        transactions = await self.store.find_transactions(status=TransactionStatus.COMPLETED.value)

        buckets: Dict[str, _Bucket] = {}
        for txn in transactions:
            key = period_key(txn["transaction_date"], resolved)
            buckets.setdefault(key, _Bucket()).add(to_decimal(txn.get("amount", 0)))

        rows = []
        for key in sorted(buckets, reverse=True)[:limit]:
            bucket = buckets[key]
            rows.append({
                "period": key,
                "transaction_count": bucket.count,
                "total_amount": to_float(bucket.total),
                "avg_amount": to_float(safe_divide(bucket.total, bucket.count)),
            })
        return rows
