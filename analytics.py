from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import get_db, utcnow
from errors import ValidationFailed
from security import require

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])

TOP_PRODUCTS_LIMIT = 5


def month_start(as_of: datetime) -> datetime:
    return datetime(as_of.year, as_of.month, 1)


def parse_month(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m")
    except ValueError:
        raise ValidationFailed("month must look like YYYY-MM")


def _sum_amount(db: Database, match: dict) -> float:
    pipeline = [
        {"$match": match},
        {"$group": {"_id": None, "revenue": {"$sum": "$amount"}}},
    ]
    result = next(iter(db["order"].aggregate(pipeline)), None) or {"revenue": 0}
    return round(float(result.get("revenue", 0)), 2)


def top_products(db: Database, limit: int = TOP_PRODUCTS_LIMIT) -> list:
    """Best sellers by revenue over paid orders.

    Lines are grouped on ``items.productId`` (the id copied into every order
    item). Equal revenue is broken by the earliest paid order that sold the
    product.
    """
    pipeline = [
        {"$match": {"payment": True}},
        {"$sort": {"date": 1}},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.productId",
            "productName": {"$first": "$items.name"},
            "quantity": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
            "firstSold": {"$min": "$date"},
        }},
        {"$sort": {"revenue": -1, "firstSold": 1}},
        {"$limit": limit},
    ]
    return [
        {
            "productId": p["_id"],
            "productName": p.get("productName"),
            "quantity": int(p.get("quantity", 0)),
            "revenue": round(float(p.get("revenue", 0)), 2),
        }
        for p in db["order"].aggregate(pipeline)
    ]


def orders_by_status(db: Database) -> dict:
    pipeline = [
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ]
    return {s["_id"]: s["count"] for s in db["order"].aggregate(pipeline)}


def compute_overview(db: Database, as_of: Optional[datetime] = None) -> dict:
    start = month_start(as_of or utcnow())
    since_start = {"$gte": start}

    overview = {
        "month": start.strftime("%Y-%m"),
        "totalRevenue": _sum_amount(db, {"payment": True}),
        "currentMonthRevenue": _sum_amount(db, {"payment": True, "date": since_start}),
        "totalOrders": db["order"].count_documents({}),
        "totalCustomers": db["user"].count_documents({}),
        "newCustomersThisMonth": db["user"].count_documents({"createdAt": since_start}),
        "topProducts": top_products(db),
        "ordersByStatus": orders_by_status(db),
    }
    logger.info("analytics_overview_computed", month=overview["month"], total_revenue=overview["totalRevenue"])
    return overview


@router.get("/overview")
def analytics_overview(month: Optional[str] = None, _admin: dict = Depends(require("analytics:read")),
                       db: Database = Depends(get_db)):
    as_of = parse_month(month) if month else None
    return {"success": True, "data": compute_overview(db, as_of)}
