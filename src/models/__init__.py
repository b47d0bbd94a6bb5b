"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.platform import Platform
from src.models.integration_credential import IntegrationCredential
from src.models.customer import Customer
from src.models.product import Product
from src.models.subscription import Subscription
from src.models.order import Order
from src.models.transaction import Transaction, TransactionSubscription
from src.models.affiliate import Affiliate
from src.models.webhook_event import WebhookEvent
from src.models.sync_log import SyncLog
from src.models.task_queue import TaskQueue

__all__ = [
    "Platform",
    "IntegrationCredential",
    "Customer",
    "Product",
    "Subscription",
    "Order",
    "Transaction",
    "TransactionSubscription",
    "Affiliate",
    "WebhookEvent",
    "SyncLog",
    "TaskQueue",
]
