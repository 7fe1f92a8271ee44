"""
Localized justification catalog.

Every response the engine sends carries a short human-readable reason.
Phrases are picked deterministically from a fixed catalog keyed by decision
and language, so the same round always reads the same way.
"""

from typing import Dict, List, Optional

from haggle.models import Decision


DEFAULT_LANGUAGE = "en"
LOW_STOCK_THRESHOLD = 10

CATALOG: Dict[str, Dict[Decision, List[str]]] = {
    "en": {
        Decision.ACCEPT: [
            "You've got a deal! {offer} it is. You're getting excellent value on this {product}.",
            "Perfect! I can do {offer} for you. That's a great price for the quality you're getting.",
            "Deal! {offer} is fair. You won't regret this {product}.",
        ],
        Decision.COUNTER: [
            "I hear you, but this {product} is premium quality. Let me do {price} for you.",
            "I'll be honest with you, {price} is a great price for this {product}.",
            "{offer} is a bit low for the quality. How about {price}? I can make that work.",
        ],
        Decision.FINAL: [
            "This is my final offer: {price} for the {product}. I can't go any lower.",
            "{price} is the best I can do on this {product}. It's already a great price.",
        ],
        Decision.REJECT: [
            "I really wish I could, but {offer} won't work. The lowest I could go was {floor}.",
            "I understand you're looking for a good deal, but {offer} is below what we can accept for this {product}.",
        ],
        Decision.EXPIRED: [
            "This negotiation has expired. Start a new one to make another offer.",
        ],
    },
    "rw": {
        Decision.ACCEPT: [
            "Yego! Twemeje {offer}. Urabona amahirwe meza!",
            "Byiza! Ndashobora gukora {offer} kuberako uri umukiriya mwiza.",
            "Emeza! {offer} ni igiciro cyiza kuri {product}.",
        ],
        Decision.COUNTER: [
            "Ndabona icyifuzo cyawe, ariko {product} ni igicuruzwa cy'ireme. Ndashobora gutanga {price}.",
            "Reka nkubwire ukuri, {price} ni igiciro cyiza kuri {product}.",
            "Hmm, {offer} ni hasi gato. Ndashobora gukora {price} kuberako uri umukiriya mwiza.",
        ],
        Decision.FINAL: [
            "Iki ni igiciro cyanjye cya nyuma: {price} kuri {product}.",
            "{price} ni cyo giciro cyiza nshobora gutanga kuri {product}.",
        ],
        Decision.REJECT: [
            "Tubabaje cyane, ariko ntidushobora kwemera munsi ya {floor}.",
            "Mbabarira, {offer} ni hasi cyane. Igiciro cyacu cya nyuma cyari {floor}.",
        ],
        Decision.EXPIRED: [
            "Ibiganiro byarangiye. Tangira ibindi kugira ngo utange icyifuzo gishya.",
        ],
    },
}

LOW_STOCK: Dict[str, str] = {
    "en": " Only {stock} left in stock!",
    "rw": " Bisigaye {stock} gusa!",
}

PERK_DESCRIPTIONS: Dict[str, Dict[str, str]] = {
    "en": {
        "free_shipping": "Plus free shipping if you accept!",
        "free_gift": "Free gift with purchase",
        "extended_warranty": "{months}-month extended warranty included",
    },
    "rw": {
        "free_shipping": "Kohereza ubuntu niba wemera!",
        "free_gift": "Impano ubuntu",
        "extended_warranty": "Garanti yongerewe y'amezi {months}",
    },
}

DEFAULT_PRODUCT_NAME = {"en": "product", "rw": "igicuruzwa"}


def supported_language(language: Optional[str]) -> str:
    """Return language if the catalog knows it, otherwise English."""
    return language if language in CATALOG else DEFAULT_LANGUAGE


def format_price(value: Optional[float]) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return f"{value:,.0f}"
    return f"{value:,.2f}"


def localized(texts: Dict[str, str], language: str, default: str = "") -> str:
    """Pick the text for language from a localized map, falling back to English."""
    if not texts:
        return default
    return texts.get(language) or texts.get(DEFAULT_LANGUAGE) or next(iter(texts.values()))


def justify(
    decision: Decision,
    language: str,
    round_number: int = 1,
    offer: Optional[float] = None,
    price: Optional[float] = None,
    floor: Optional[float] = None,
    product_name: Optional[Dict[str, str]] = None,
    stock_level: Optional[int] = None
) -> str:
    """
    Build the justification for one decision.

    Args:
        decision: Decision being explained
        language: Requested language, unknown languages fall back to English
        round_number: Round being answered, used to rotate through phrases
        offer: Shopper's offer
        price: Counter price or agreed price
        floor: Lowest price available to the shopper
        product_name: Localized product name
        stock_level: Units in stock, adds an urgency note when low

    Returns:
        Justification text
    """
    language = supported_language(language)
    phrases = CATALOG[language][decision]
    template = phrases[max(round_number - 1, 0) % len(phrases)]

    text = template.format(
        offer=format_price(offer),
        price=format_price(price),
        floor=format_price(floor),
        product=localized(product_name or {}, language, DEFAULT_PRODUCT_NAME[language]),
    )

    if (
        decision in (Decision.COUNTER, Decision.FINAL)
        and stock_level is not None
        and 0 < stock_level < LOW_STOCK_THRESHOLD
    ):
        text += LOW_STOCK[language].format(stock=stock_level)

    return text


def perk_description(perk_type: str, language: str, months: Optional[int] = None) -> str:
    language = supported_language(language)
    return PERK_DESCRIPTIONS[language][perk_type].format(months=months)


DECLINED: Dict[str, str] = {
    "en": "No problem. The offer of {price} has been withdrawn, you're welcome back any time.",
    "rw": "Nta kibazo. Icyifuzo cya {price} cyavanyweho, murakaza neza igihe cyose.",
}


def justify_decline(language: str, price: Optional[float] = None) -> str:
    language = supported_language(language)
    return DECLINED[language].format(price=format_price(price))
