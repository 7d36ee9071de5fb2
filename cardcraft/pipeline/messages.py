from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

import openai
from openai import OpenAI

from .. import config
from .compose import Card


logger = logging.getLogger(__name__)

TONES = ("warm", "formal", "casual", "poetic")
DEFAULT_TONE = "warm"
LOCAL_SOURCE = "local"

PREWRITTEN = {
    "cash": (
        "Time has truly flown since our beautiful wedding day. Your generous gift has been such a "
        "blessing as we've settled into married life together. We have been putting it toward creating "
        "our home, and every time we make a purchase, we think of your kindness and generosity. Thank you "
        "so much for celebrating with us and for your thoughtful gift."
    ),
    "gift_card": (
        "We were so happy you could join us on our special day! Your gift card was incredibly thoughtful "
        "and will help us as we build our life together. We've already started planning how to use it for "
        "our home. Thank you for your generosity and for being part of our celebration."
    ),
    "default": (
        "What a wonderful celebration we had, and having you there made it even more special! Your "
        "thoughtful gift means so much to us as we begin this new chapter. We're so grateful for your "
        "presence and your generosity. Thank you from the bottom of our hearts!"
    ),
}


class ProviderError(RuntimeError):
    pass


class TransientProviderError(ProviderError):
    pass


@dataclass(frozen=True)
class MessageRequest:
    name: str
    gift: str = ""
    tone: str = DEFAULT_TONE
    signers: str = config.SIGNERS


class MessageProvider(Protocol):
    name: str

    def generate(self, request: MessageRequest) -> str:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 8.0

    def delays(self) -> List[float]:
        """Sleeps between consecutive attempts."""
        out: List[float] = []
        delay = self.base_delay
        for _ in range(max(0, self.max_attempts - 1)):
            out.append(min(delay, self.max_delay))
            delay *= self.multiplier
        return out


def gift_category(gift: str) -> str:
    lowered = (gift or "").lower()
    if "cash" in lowered:
        return "cash"
    if "card" in lowered:
        return "gift_card"
    return "default"


def prewritten_message(gift: str) -> str:
    return PREWRITTEN[gift_category(gift)]


def default_message(gift: str) -> str:
    of_gift = f" of {gift}" if gift else ""
    return (
        f"Thank you so much for your generous gift{of_gift}. Your kindness means the world to us "
        "as we begin this new chapter together."
    )


def local_message(request: MessageRequest) -> str:
    gift = (request.gift or "gift").strip().lower()
    first_name = request.name.split()[0] if request.name.split() else request.name
    tone = request.tone if request.tone in TONES else DEFAULT_TONE
    if tone == "formal":
        return (
            "We wish to express our sincere gratitude for your presence at our wedding and for your "
            f"generous gift of {gift}. Your thoughtfulness is deeply appreciated as we begin our married "
            "life together. We are honored to have shared this special occasion with you."
        )
    if tone == "casual":
        return (
            f"Hey {first_name}! Thanks so much for coming to our wedding and for the awesome {gift}! "
            "We had such a blast celebrating with you. Your gift is going to be so useful as we set up "
            "our new place together. Really appreciate you being there!"
        )
    if tone == "poetic":
        return (
            "Like stars that light the evening sky,\n"
            "Your presence made our wedding shine.\n"
            f"Your gift of {gift}, so thoughtful and kind,\n"
            "Fills our hearts with joy divine."
        )
    return (
        "We can't thank you enough for being part of our special day and for your incredibly "
        f"thoughtful {gift}. It means the world to us that you took the time to celebrate with us, and "
        "your generosity has touched our hearts deeply. We're so grateful to have you in our lives!"
    )


def _prompt(request: MessageRequest) -> str:
    gift = request.gift or "their presence at the wedding"
    return (
        f"Write a {request.tone} wedding thank-you note to {request.name} for {gift}. "
        "Three to four sentences, no greeting line and no sign-off; the card already has both. "
        f"It is written by {request.signers}."
    )


class OpenAIProvider:
    def __init__(self, model: str, client: Optional[OpenAI] = None, timeout: float = 20.0) -> None:
        self.model = model
        self.name = f"openai:{model}"
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=config.OPENAI_API_KEY, timeout=self.timeout, max_retries=0)
        return self._client

    def generate(self, request: MessageRequest) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You write short, sincere wedding thank-you card messages."},
                    {"role": "user", "content": _prompt(request)},
                ],
                temperature=0.8,
                max_tokens=300,
            )
        except (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError) as exc:
            raise TransientProviderError(f"{self.name}: {exc}") from exc
        except openai.OpenAIError as exc:
            raise ProviderError(f"{self.name}: {exc}") from exc

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            raise TransientProviderError(f"{self.name}: empty completion")
        return text


class FallbackChain:
    """
    Try each provider in order with its retry policy; transient failures back
    off and retry, permanent ones skip ahead. When every provider is exhausted
    the deterministic local message is used.
    """

    def __init__(
        self,
        steps: Sequence[Tuple[MessageProvider, RetryPolicy]],
        fallback: Callable[[MessageRequest], str] = local_message,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.steps = list(steps)
        self.fallback = fallback
        self.sleep = sleep

    def generate(self, request: MessageRequest) -> Tuple[str, str]:
        for provider, policy in self.steps:
            delays = policy.delays()
            for attempt in range(1, policy.max_attempts + 1):
                try:
                    return provider.generate(request), provider.name
                except TransientProviderError as exc:
                    logger.warning("%s attempt %d/%d failed: %s", provider.name, attempt, policy.max_attempts, exc)
                    if attempt < policy.max_attempts:
                        self.sleep(delays[attempt - 1])
                except ProviderError as exc:
                    logger.warning("%s failed permanently: %s", provider.name, exc)
                    break
        logger.info("All providers exhausted for %s, using local message", request.name)
        return self.fallback(request), LOCAL_SOURCE


def default_chain() -> FallbackChain:
    if not config.OPENAI_API_KEY:
        return FallbackChain([])
    policy = RetryPolicy()
    return FallbackChain([(OpenAIProvider(model), policy) for model in config.OPENAI_MODELS])


def fill_prewritten(cards: Sequence[Card]) -> List[Card]:
    return [
        card if card.message else Card(card.recipient_name, card.gift, prewritten_message(card.gift))
        for card in cards
    ]


def fill_generated(
    cards: Sequence[Card],
    tone: str = DEFAULT_TONE,
    chain: Optional[FallbackChain] = None,
    signers: Optional[str] = None,
    overwrite: bool = False,
) -> List[Card]:
    if tone not in TONES:
        raise ValueError(f"Unknown tone {tone!r}; expected one of {', '.join(TONES)}")
    runner = chain or default_chain()
    out: List[Card] = []
    for card in cards:
        if card.message and not overwrite:
            out.append(card)
            continue
        request = MessageRequest(
            name=card.recipient_name,
            gift=card.gift,
            tone=tone,
            signers=signers or config.SIGNERS,
        )
        text, source = runner.generate(request)
        logger.debug("Message for %s from %s", card.recipient_name, source)
        out.append(Card(card.recipient_name, card.gift, text))
    return out
