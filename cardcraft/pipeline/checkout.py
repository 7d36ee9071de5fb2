from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from .. import config
from ..payments import PaymentGateway, PaymentIntent, plan_amount, verify_payment
from ..temp_store import TTLStore, store_new
from .compose import Card, Document, Signature
from .render_pdf import Renderer, ReportLabRenderer
from .run import PdfGenerationFailed, build_document, render_with_retry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuestDraft:
    """A guest-checkout order: everything needed to print, held until paid."""

    cards: List[Card] = field(default_factory=list)
    template: str = config.DEFAULT_TEMPLATE
    cards_per_page: int = config.DEFAULT_CARDS_PER_PAGE
    signers: Optional[str] = None
    email: Optional[str] = None
    plan: str = "starter"

    @property
    def signature(self) -> Signature:
        return Signature(closing=config.SIGNATURE_LINE, names=self.signers or config.SIGNERS)

    def document(self, limit: Optional[int] = None) -> Document:
        cards = self.cards if limit is None else self.cards[:limit]
        return build_document(cards, self.template, self.cards_per_page, self.signature)


class GuestCheckout:
    def __init__(
        self,
        store: TTLStore[GuestDraft],
        gateway: PaymentGateway,
        renderer: Optional[Renderer] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.renderer = renderer or ReportLabRenderer()

    def start(self, draft: GuestDraft, plan: str) -> Tuple[str, PaymentIntent]:
        # fail on bad density or empty lists before taking money
        draft.document()
        plan_amount(plan)
        draft = replace(draft, plan=plan)
        token = store_new(self.store, draft)
        try:
            intent = self.gateway.create_intent(plan, {"token": token})
        except Exception:
            self.store.delete(token)
            raise
        logger.info("Guest checkout %s started: %d cards, plan %s", token, len(draft.cards), plan)
        return token, intent

    def preview(self, token: str) -> Document:
        return self.store.get(token).document(limit=config.PREVIEW_CARD_LIMIT)

    def complete(self, token: str, intent_id: str) -> bytes:
        draft = self.store.get(token)
        # the intent must have paid for this order, not just any order
        verify_payment(self.gateway, intent_id, plan_amount(draft.plan), {"token": token})
        draft = self.store.take(token)
        try:
            return render_with_retry(self.renderer, draft.document())
        except PdfGenerationFailed:
            # paid but not delivered: keep the order so the customer can retry
            self.store.put(token, draft)
            raise
