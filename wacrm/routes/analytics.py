import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..auth import get_current_agent, get_current_user, require_admin
from ..database import get_db
from ..models import Agent, User, WhatsAppMessageLog
from ..models_tenant import get_tenant_tables, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analytics"])

COMPLETED_ORDER_STATUSES = ("delivered",)
ACTIVE_WINDOW = timedelta(hours=24)
RECENT_ACTIVITY_LIMIT = 3
RECENT_MESSAGES_SCAN = 50
ACTIVITY_PREVIEW_LENGTH = 50


def last_twelve_months(now: datetime) -> list[tuple[int, int]]:
    """(year, month) pairs, oldest first, ending with the current month"""
    months = []
    year, month = now.year, now.month
    for _ in range(12):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


def time_ago(timestamp: Optional[datetime], now: datetime) -> str:
    if timestamp is None:
        return ""
    seconds = max(int((now - timestamp).total_seconds()), 0)
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} min ago"
    if seconds < 86400:
        return f"{seconds // 3600} h ago"
    return f"{seconds // 86400} d ago"


def average_response_minutes(messages: list[dict]) -> Optional[float]:
    """Mean delay between a customer message and the next reply to that customer"""
    waiting: dict[int, datetime] = {}
    delays = []
    for message in sorted(messages, key=lambda m: m["timestamp"]):
        customer_id = message["customer_id"]
        if message["direction"] == "inbound":
            waiting.setdefault(customer_id, message["timestamp"])
        elif customer_id in waiting:
            delays.append((message["timestamp"] - waiting.pop(customer_id)).total_seconds() / 60)
    if not delays:
        return None
    return sum(delays) / len(delays)


# ==================== Agent analytics ====================

@router.get("/get-analytics")
async def get_analytics(
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Order, revenue and appointment figures for the agent's analytics page"""
    tables = get_tenant_tables(agent.agent_prefix)
    now = datetime.utcnow()

    total_customers = db.execute(select(func.count()).select_from(tables.customers)).scalar_one()
    orders = [
        row_to_dict(row)
        for row in db.execute(
            select(tables.orders.c.id, tables.orders.c.status, tables.orders.c.total_amount, tables.orders.c.created_at)
        )
    ]
    appointments = [
        row_to_dict(row)
        for row in db.execute(select(tables.appointments.c.appointment_date, tables.appointments.c.status))
    ]

    monthly_orders = []
    monthly_revenue = []
    for year, month in last_twelve_months(now):
        in_month = [
            o for o in orders if o["created_at"] and o["created_at"].year == year and o["created_at"].month == month
        ]
        label = datetime(year, month, 1).strftime("%b")
        monthly_orders.append({"month": label, "count": len(in_month)})
        monthly_revenue.append({"month": label, "revenue": sum(o["total_amount"] or 0 for o in in_month)})

    status_counts = Counter(o["status"] or "unknown" for o in orders)
    analytics = {
        "totalCustomers": total_customers,
        "totalOrders": len(orders),
        "totalRevenue": sum(o["total_amount"] or 0 for o in orders),
        "pendingOrders": status_counts.get("pending", 0),
        "completedOrders": sum(status_counts.get(s, 0) for s in COMPLETED_ORDER_STATUSES),
        "upcomingAppointments": sum(
            1 for a in appointments if a["appointment_date"] > now and a["status"] != "cancelled"
        ),
        "totalAppointments": len(appointments),
        "monthlyOrders": monthly_orders,
        "monthlyRevenue": monthly_revenue,
        "orderStatuses": [{"status": status, "count": count} for status, count in status_counts.items()],
    }
    return {"success": True, "analytics": analytics}


@router.get("/get-dashboard-data")
async def get_dashboard_data(
    current_user: User = Depends(get_current_user),
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Headline metrics and latest activity for the agent dashboard"""
    tables = get_tenant_tables(agent.agent_prefix)
    now = datetime.utcnow()
    messages = tables.messages
    customers = tables.customers

    recent = [
        row_to_dict(row)
        for row in db.execute(
            select(messages, customers.c.name.label("customer_name"))
            .select_from(messages.join(customers, messages.c.customer_id == customers.c.id))
            .where(messages.c.timestamp >= now - ACTIVE_WINDOW)
            .order_by(messages.c.timestamp.desc(), messages.c.id.desc())
            .limit(RECENT_MESSAGES_SCAN)
        )
    ]

    start_of_day = datetime(now.year, now.month, now.day)
    orders_today = db.execute(
        select(func.count())
        .select_from(tables.orders)
        .where(tables.orders.c.created_at >= start_of_day, tables.orders.c.created_at < start_of_day + timedelta(days=1))
    ).scalar_one()

    activity = []
    for message in recent[:RECENT_ACTIVITY_LIMIT]:
        text = message["message"] or ""
        if len(text) > ACTIVITY_PREVIEW_LENGTH:
            text = text[:ACTIVITY_PREVIEW_LENGTH] + "..."
        name = message["customer_name"] or f"Customer {message['customer_id']}"
        activity.append(
            {
                "id": str(message["id"]),
                "type": "conversation",
                "title": f"Message from {name}",
                "description": text,
                "time": time_ago(message["timestamp"], now),
                "status": "completed" if message["is_read"] else "new",
            }
        )

    response_minutes = average_response_minutes(recent)
    return {
        "success": True,
        "data": {
            "agent": {"name": current_user.name or "Agent"},
            "metrics": {
                "activeConversations": len({m["customer_id"] for m in recent}),
                "totalCustomers": db.execute(select(func.count()).select_from(customers)).scalar_one(),
                "ordersToday": orders_today,
                "avgResponseTime": f"{response_minutes:.1f} min" if response_minutes is not None else "N/A",
            },
            "recentActivity": activity,
        },
    }


# ==================== Admin ====================

@router.get("/get-admin-info")
async def get_admin_info(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {
        "success": True,
        "user": {"id": admin.id, "name": admin.name, "email": admin.email, "role": admin.role},
        "analytics": {
            "total_agents": db.query(func.count(Agent.id)).scalar(),
            "total_users": db.query(func.count(User.id)).scalar(),
            "total_messages": db.query(func.count(WhatsAppMessageLog.id)).scalar(),
        },
    }
