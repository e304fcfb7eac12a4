from datetime import datetime, timedelta

from conftest import add_customer
from sqlalchemy import insert

from wacrm.routes.analytics import average_response_minutes, last_twelve_months, time_ago
from wacrm.services.message_store import log_whatsapp_message, store_message


def add_order(db, account, customer_id, total, status="pending", created_at=None):
    db.execute(
        insert(account.tables.orders).values(
            customer_id=customer_id, total_amount=total, status=status, created_at=created_at or datetime.utcnow()
        )
    )
    db.commit()


def add_appointment(db, account, customer_id, days_from_now, status="scheduled"):
    db.execute(
        insert(account.tables.appointments).values(
            customer_id=customer_id,
            title="Visit",
            appointment_date=datetime.utcnow() + timedelta(days=days_from_now),
            status=status,
        )
    )
    db.commit()


def test_analytics_summarizes_orders_and_appointments(client, db, agent):
    customer_id = add_customer(db, agent)
    add_order(db, agent, customer_id, 100, "pending")
    add_order(db, agent, customer_id, 50, "delivered")
    add_order(db, agent, customer_id, 25, "cancelled")
    add_appointment(db, agent, customer_id, 3)
    add_appointment(db, agent, customer_id, 5, status="cancelled")
    add_appointment(db, agent, customer_id, -2, status="completed")

    analytics = client.get("/get-analytics", headers=agent.headers).json()["analytics"]

    assert analytics["totalCustomers"] == 1
    assert analytics["totalOrders"] == 3
    assert analytics["totalRevenue"] == 175
    assert analytics["pendingOrders"] == 1
    assert analytics["completedOrders"] == 1
    assert analytics["upcomingAppointments"] == 1
    assert analytics["totalAppointments"] == 3
    assert len(analytics["monthlyOrders"]) == 12
    assert analytics["monthlyOrders"][-1]["count"] == 3
    assert analytics["monthlyRevenue"][-1]["revenue"] == 175
    assert {s["status"]: s["count"] for s in analytics["orderStatuses"]} == {
        "pending": 1,
        "delivered": 1,
        "cancelled": 1,
    }


def test_dashboard_metrics_and_activity(client, db, agent):
    jane = add_customer(db, agent)
    john = add_customer(db, agent, phone="+14155550199", name="John Roe")
    now = datetime.utcnow()
    store_message(db, agent.tables, jane, "Is the blue one in stock?", "inbound", timestamp=now - timedelta(minutes=30))
    store_message(db, agent.tables, jane, "Yes!", "outbound", timestamp=now - timedelta(minutes=20))
    store_message(db, agent.tables, john, "x" * 80, "inbound", timestamp=now - timedelta(minutes=5))
    store_message(db, agent.tables, john, "Old", "inbound", timestamp=now - timedelta(days=3))
    add_order(db, agent, jane, 10)

    data = client.get("/get-dashboard-data", headers=agent.headers).json()["data"]

    assert data["agent"] == {"name": "Agent agt_test"}
    assert data["metrics"]["activeConversations"] == 2
    assert data["metrics"]["totalCustomers"] == 2
    assert data["metrics"]["ordersToday"] == 1
    assert data["metrics"]["avgResponseTime"] == "10.0 min"

    activity = data["recentActivity"]
    assert len(activity) == 3
    assert activity[0]["title"] == "Message from John Roe"
    assert activity[0]["description"] == "x" * 50 + "..."
    assert activity[0]["status"] == "new"
    assert activity[0]["time"] == "5 min ago"


def test_dashboard_without_messages(client, agent):
    metrics = client.get("/get-dashboard-data", headers=agent.headers).json()["data"]["metrics"]
    assert metrics["avgResponseTime"] == "N/A"
    assert metrics["activeConversations"] == 0


def test_admin_info(client, db, admin, agent):
    log_whatsapp_message(db, agent.user_id, agent.agent_id, "+14155550100", "text")

    body = client.get("/get-admin-info", headers=admin.headers).json()

    assert body["user"]["email"] == "admin@example.com"
    assert body["analytics"] == {"total_agents": 1, "total_users": 2, "total_messages": 1}
    assert client.get("/get-admin-info", headers=agent.headers).status_code == 403


def test_helpers():
    months = last_twelve_months(datetime(2024, 2, 15))
    assert months[0] == (2023, 3)
    assert months[-1] == (2024, 2)

    now = datetime(2024, 1, 1, 12, 0)
    assert time_ago(now - timedelta(seconds=10), now) == "just now"
    assert time_ago(now - timedelta(hours=3), now) == "3 h ago"
    assert time_ago(now - timedelta(days=2), now) == "2 d ago"

    start = datetime(2024, 1, 1, 9, 0)
    messages = [
        {"customer_id": 1, "direction": "inbound", "timestamp": start},
        {"customer_id": 1, "direction": "inbound", "timestamp": start + timedelta(minutes=2)},
        {"customer_id": 1, "direction": "outbound", "timestamp": start + timedelta(minutes=6)},
        {"customer_id": 2, "direction": "outbound", "timestamp": start},
    ]
    assert average_response_minutes(messages) == 6
