from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from flask import current_app

from services.acceptance import AcceptanceGate
from services.gateway import StripeGateway
from services.ledger import RequestLedger
from services.notifications import EMAIL, WHATSAPP, NotificationDispatcher
from services.payments import PaymentGatewayAdapter
from services.retry_queue import RetryPolicy, RetryQueue
from services.slots import SlotAllocator
from utils.emailer import EmailSender
from utils.whatsapp import WhatsAppSender


@dataclass
class Fulfillment:
    ledger: RequestLedger
    slots: SlotAllocator
    gate: AcceptanceGate
    payments: PaymentGatewayAdapter
    retry_queue: RetryQueue
    dispatcher: NotificationDispatcher


def _policies(cfg) -> dict:
    multiplier = cfg["RETRY_BACKOFF_MULTIPLIER"]
    ceiling = cfg["RETRY_MAX_DELAY_SECONDS"]
    return {
        EMAIL: RetryPolicy(cfg["EMAIL_MAX_RETRIES"], cfg["EMAIL_INITIAL_DELAY_SECONDS"], multiplier, ceiling),
        WHATSAPP: RetryPolicy(cfg["WHATSAPP_MAX_RETRIES"], cfg["WHATSAPP_INITIAL_DELAY_SECONDS"], multiplier, ceiling),
    }


def init_services(app, gateway=None, email_sender=None, whatsapp_sender=None) -> Fulfillment:
    cfg = app.config

    retry_queue = RetryQueue()
    executor = None
    if cfg.get("NOTIFY_ASYNC"):
        executor = ThreadPoolExecutor(max_workers=cfg.get("NOTIFY_MAX_WORKERS", 4), thread_name_prefix="notify")
    dispatcher = NotificationDispatcher(
        email_sender or EmailSender(),
        whatsapp_sender or WhatsAppSender(),
        retry_queue,
        policies=_policies(cfg),
        executor=executor,
    )

    slots = SlotAllocator()
    ledger = RequestLedger(dispatcher, slots)
    gate = AcceptanceGate(ledger)

    gateway = gateway or StripeGateway(
        cfg.get("STRIPE_SECRET_KEY"),
        timeout=cfg.get("GATEWAY_TIMEOUT_SECONDS", 10),
        currency=cfg.get("PAYMENT_CURRENCY", "BRL"),
    )
    payments = PaymentGatewayAdapter(
        gateway,
        currency=cfg.get("PAYMENT_CURRENCY", "BRL"),
        success_url=cfg.get("STRIPE_SUCCESS_URL"),
        failure_url=cfg.get("STRIPE_CANCEL_URL"),
        unlimited_plan_name=cfg.get("UNLIMITED_PLAN_NAME", "Enterprise"),
    )

    fulfillment = Fulfillment(ledger, slots, gate, payments, retry_queue, dispatcher)
    app.extensions["fulfillment"] = fulfillment
    return fulfillment


def get_fulfillment() -> Fulfillment:
    return current_app.extensions["fulfillment"]
