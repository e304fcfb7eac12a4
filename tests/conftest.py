import io
import os
from datetime import datetime, timedelta

# Settings are read at import time, so they must be in place before wacrm loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["CHATBOT_SECRET"] = "test-chatbot-secret"
os.environ["R2_PUBLIC_URL"] = "https://media.example.com"
os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-me"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["REDIS_HOST"] = ""

import httpx
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import insert, select

from wacrm import models_tenant, storage
from wacrm.database import Base, SessionLocal, engine
from wacrm.domain.invoices import service as invoice_service_module
from wacrm.main import app
from wacrm.models import Agent, User, WhatsAppConfiguration
from wacrm.models_tenant import create_tenant_tables, row_to_dict, tenant_metadata
from wacrm.security_utils import create_access_token, hash_password
from wacrm.services import invoice_delivery
from wacrm.services.inbound import InboundProcessor
from wacrm.services.whatsapp_service import WhatsAppAPIError, WhatsAppClient

PASSWORD = "password123"


# ==================== Fakes ====================


class FakeR2:
    """In-memory stand-in for the boto3 S3 client"""

    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = (Body, ContentType)

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key][0])}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)


class FakeWhatsApp:
    """Records Graph API calls made through WhatsAppClient"""

    def __init__(self):
        self.sent = []
        self.uploads = []
        self.media = {}
        self.send_error = None
        self.download_error = None
        self.profile_picture = None

    def add_media(self, media_id, content=b"media-bytes", mime_type="image/jpeg"):
        self.media[media_id] = (content, mime_type)

    async def send_message(self, client, to, message_type, content):
        if self.send_error:
            raise self.send_error
        self.sent.append({"to": to, "type": message_type, "content": content})
        return {"messages": [{"id": f"wamid.{len(self.sent)}"}]}

    async def upload_media(self, client, data, filename, mime_type, media_type=None):
        self.uploads.append({"filename": filename, "mime_type": mime_type, "type": media_type, "size": len(data)})
        return f"uploaded-{len(self.uploads)}"

    async def download_media(self, client, media_id):
        if self.download_error:
            raise self.download_error
        if media_id not in self.media:
            raise WhatsAppAPIError("Invalid media ID - cannot fetch media details", 400, {"error": "not found"})
        return self.media[media_id]

    async def get_profile_picture_url(self, client, phone):
        return self.profile_picture


# ==================== Database ====================


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    tenant_metadata.drop_all(bind=engine)
    tenant_metadata.clear()
    models_tenant._registry.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


# ==================== External services ====================


@pytest.fixture(autouse=True)
def r2(monkeypatch):
    fake = FakeR2()
    monkeypatch.setattr(storage, "get_r2_client", lambda: fake)
    return fake


@pytest.fixture(autouse=True)
def whatsapp(monkeypatch):
    fake = FakeWhatsApp()

    async def send_message(self, to, message_type, content):
        return await fake.send_message(self, to, message_type, content)

    async def upload_media(self, data, filename, mime_type, media_type=None):
        return await fake.upload_media(self, data, filename, mime_type, media_type)

    async def download_media(self, media_id):
        return await fake.download_media(self, media_id)

    async def get_profile_picture_url(self, phone):
        return await fake.get_profile_picture_url(self, phone)

    monkeypatch.setattr(WhatsAppClient, "send_message", send_message)
    monkeypatch.setattr(WhatsAppClient, "upload_media", upload_media)
    monkeypatch.setattr(WhatsAppClient, "download_media", download_media)
    monkeypatch.setattr(WhatsAppClient, "get_profile_picture_url", get_profile_picture_url)
    return fake


@pytest.fixture(autouse=True)
def remote_files(monkeypatch):
    """URL -> (bytes, content type) served instead of real HTTP downloads"""
    files = {}

    async def fetch(url):
        if url not in files:
            raise httpx.HTTPError(f"not found: {url}")
        return files[url]

    monkeypatch.setattr(invoice_delivery, "fetch_remote_file", fetch)
    monkeypatch.setattr(invoice_service_module, "fetch_remote_file", fetch)
    return files


@pytest.fixture(autouse=True)
def ai_webhook(monkeypatch):
    forwarded = []

    async def forward(self, config, agent, customer, stored, phone_number_id):
        forwarded.append({"customer_id": customer["id"], "message": stored["message"], "url": config.webhook_url})
        return True

    monkeypatch.setattr(InboundProcessor, "forward_to_ai", forward)
    return forwarded


# ==================== Accounts ====================


class Account:
    """A user with bearer headers, plus agent and tenant tables when the user is an agent"""

    def __init__(self, user, agent=None):
        self.user = user
        self.user_id = user.id
        self.headers = {"Authorization": f"Bearer {create_access_token(user.id)}"}
        self.agent = agent
        self.agent_id = agent.id if agent else None
        self.tables = models_tenant.get_tenant_tables(agent.agent_prefix) if agent else None


def make_user(db, email, role="agent", name="Test User"):
    user = User(name=name, email=email, password_hash=hash_password(PASSWORD), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_agent_account(db, email, prefix, credits=10.0, business_type="product"):
    user = make_user(db, email, role="agent", name=f"Agent {prefix}")
    agent = Agent(user_id=user.id, agent_prefix=prefix, business_type=business_type, credits=credits)
    db.add(agent)
    db.commit()
    db.refresh(agent)
    create_tenant_tables(prefix, engine)
    return Account(user, agent)


def make_whatsapp_config(db, account, phone_number_id="1000001", webhook_url="https://bot.example.com/hook"):
    config = WhatsAppConfiguration(
        user_id=account.user_id,
        whatsapp_number="+15550000000",
        webhook_url=webhook_url,
        api_key="test-access-token",
        phone_number_id=phone_number_id,
        is_active=True,
    )
    db.add(config)
    db.commit()
    db.refresh(config)
    return config


def add_customer(db, account, phone="+14155550100", name="Jane Doe", last_message_hours_ago=1, **values):
    now = datetime.utcnow()
    last_message = now - timedelta(hours=last_message_hours_ago) if last_message_hours_ago is not None else None
    result = db.execute(
        insert(account.tables.customers).values(
            agent_id=account.agent_id,
            name=name,
            phone=phone,
            lead_stage=values.pop("lead_stage", "New Lead"),
            language="en",
            ai_enabled=values.pop("ai_enabled", True),
            last_user_message_time=last_message,
            created_at=now,
            updated_at=now,
            **values,
        )
    )
    db.commit()
    return result.inserted_primary_key[0]


def add_template(db, account, name, body, category="utility", is_active=True):
    now = datetime.utcnow()
    result = db.execute(
        insert(account.tables.templates).values(
            agent_id=account.agent_id,
            name=name,
            category=category,
            language="en_US",
            body=body,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
    )
    db.commit()
    return result.inserted_primary_key[0]


def fetch_all(db, table, *where):
    return [row_to_dict(row) for row in db.execute(select(table).where(*where))]


@pytest.fixture
def admin(db):
    return Account(make_user(db, "admin@example.com", role="admin", name="Admin"))


@pytest.fixture
def agent(db):
    return make_agent_account(db, "agent@example.com", "agt_test")


@pytest.fixture
def other_agent(db):
    return make_agent_account(db, "other@example.com", "agt_othr")


@pytest.fixture
def configured_agent(db, agent):
    make_whatsapp_config(db, agent)
    return agent
