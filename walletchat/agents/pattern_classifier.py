#!/usr/bin/env python3
"""
Pattern Classifier Module
Classifies normalized user text into wallet intent categories using keyword
sets, regex patterns and typo tolerance for single-word commands.
Supports English, Arabic, Spanish and French triggers.
"""

import re
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from walletchat.agents.entity_extractor import EntityExtractor
from walletchat.schemas.core import (
    BitcoinUnit, ClassificationResult, IntentScore, IntentType, MatchStrength,
    ParsedEntity, WalletIntent
)
from walletchat.utils.address_validator import AddressValidator
from walletchat.utils.config import settings
from walletchat.utils.logger import get_logger
from walletchat.utils.text_normalizer import normalize_for_matching, normalize_text

logger = get_logger("pattern_classifier")


class SocialSignal(str, Enum):
    GREETING = "greeting"
    GRATITUDE = "gratitude"
    AFFIRMATION = "affirmation"
    FRUSTRATION = "frustration"
    CONFUSION = "confusion"
    HUMOR = "humor"
    SADNESS = "sadness"
    EXCITEMENT = "excitement"
    NEUTRAL = "neutral"


# Category rules. "match" selects how keywords are looked up:
#   word      - whole-word occurrence
#   substring - phrase occurrence anchored at a word start
#   prefix    - whole text equals the keyword or starts with it plus " ", "," or "!"
CATEGORY_RULES: Dict[IntentType, Dict] = {
    IntentType.CONFIRM_ACTION: {
        "match": "prefix",
        "keywords": [
            "yes", "confirm", "ok", "okay", "go", "send it", "do it",
            "approve", "yeah", "yep", "yup", "sure", "go ahead", "proceed",
            "affirmative", "absolutely", "definitely", "y", "ya", "yea",
            "that's right", "correct", "right", "looks good", "i'm sure", "im sure",
            "go for it", "let's do it", "lets do it", "confirmed", "approved",
            "roger", "bet", "lgtm", "lfg",
            "نعم", "أكد", "تأكيد", "موافق", "تمام", "أوافق", "يلا",
            "sí", "si", "confirmar", "dale", "adelante", "correcto",
            "oui", "confirmer", "d'accord", "bien sûr", "absolument",
            "parfait", "entendu", "exact", "exactement",
            "\U0001F44D", "✅",
        ],
    },
    IntentType.CANCEL_ACTION: {
        "match": "prefix",
        "keywords": [
            "no", "cancel", "stop", "nevermind", "never mind", "back",
            "nope", "abort", "don't", "dont", "nah", "n",
            "forget it", "scratch that", "undo", "go back",
            "not now", "hold on", "wait", "cancelled", "canceled",
            "no way", "back out", "disregard", "dismiss",
            "exit", "quit", "leave", "no thanks", "no thank",
            "changed my mind", "not anymore",
            "لا", "إلغاء", "الغاء", "توقف", "ارجع",
            "cancelar", "detener", "volver", "parar",
            "non", "annuler", "arrêter", "arreter", "retour",
            "pas maintenant", "laisse tomber",
            "\U0001F44E", "❌",
        ],
    },
    IntentType.SEND: {
        "match": "word",
        "keywords": [
            "send", "transfer", "pay", "withdraw", "forward",
            "wire", "dispatch", "remit", "zap",
            "ارسل", "أرسل", "ادفع", "ارسال", "تحويل", "دفع",
            "enviar", "envía", "envia", "transferir", "pagar", "mandar",
            "envoyer", "transférer", "transferer", "payer",
        ],
        "patterns": [
            r"\bsend\s+[\d.]+\s*(?:btc|sats?|satoshis?|bitcoin)?\s*(?:to\s+)?\S+",
            r"\btransfer\s+[\d.]+\s*(?:btc|sats?|satoshis?|bitcoin)?\s*(?:to\s+)?\S+",
            r"\bpay\s+(?:bc1|tb1|[13mn2])\S+\s+[\d.]+",
            r"\bpay\s+[\d.]+\s*(?:btc|sats?|satoshis?|bitcoin)?\s*(?:to\s+)?\S+",
            r"\bmove\s+[\d.]+\s*(?:btc|sats?|satoshis?|bitcoin)?\s*(?:to\s+)?\S+",
            r"\bsend\s+(?:all|max|everything)\s+(?:to\s+)?\S+",
            r"\bsend\s+to\s+(?:bc1|tb1|[13mn2])\S+",
            r"\bi\s+want\s+to\s+send\b",
            r"\bi'?d\s+like\s+to\s+send\b",
            r"\blet\s+me\s+send\b",
            r"\bcan\s+i\s+send\b",
            r"\b(?:send|transfer|move)\s+(?:btc|bitcoin|sats?|satoshis?)\b",
            r"\b(?:send|transfer|pay|push)\s+.*\s+to\b",
            r"\benviar?\s+[\d.]+\s*(?:btc|sats?|bitcoin)?\s*(?:a\s+)?\S+",
            r"\bارسل\s+[\d.]+",
        ],
        "exact": ["send", "transfer", "pay", "wire", "zap"],
        "strong": ["send to", "transfer to", "pay to", "send btc", "send bitcoin", "send sats"],
        "fuzzy": ["send", "enviar", "envoyer"],
    },
    IntentType.CONVERT_AMOUNT: {
        "match": "substring",
        "requires_digit": True,
        "keywords": ["convert", "calculate", "swap", "احسب", "convertir", "calcular", "calculer"],
        "patterns": [
            r"\bconvert\s+[\d.]+\s*(?:btc|bitcoin|sats?|satoshis?)?\b",
            r"\bhow\s+much\s+is\s+[\d.]+\s*.*\s+in\b",
            r"\bhow\s+much\s+(?:is|are)\s+[\d.]+\s*.*worth\b",
            r"\b[\d.]+\s*(?:btc|bitcoin)\s+in\b",
            r"\b[\d.]+\s*(?:sats?|satoshis?)\s+in\b",
            r"\b[\d.]+\s*(?:dollars?|usd|euros?|eur)\s+(?:in\s+|to\s+)?(?:btc|bitcoin|sats?)\b",
            r"\bcalculate\s+[\d.]+",
            r"\bwhat\s+(?:is|are)\s+[\d.]+\s*(?:btc|bitcoin|sats?|satoshis?)\b",
            r"[$€£][\d.]+\s+(?:in\s+)?(?:btc|bitcoin|sats?)\b",
            r"\b[\d.]+\s*(?:bitcoin|btc)\s+(?:in|to)\s+(?:dollars?|usd|eur|gbp)\b",
        ],
        "strong_always": True,
    },
    IntentType.PRICE: {
        "match": "substring",
        "keywords": [
            "price", "btc price", "bitcoin price", "how much is bitcoin",
            "what is bitcoin worth", "current price", "market price",
            "how much is btc", "btc value", "bitcoin value",
            "price of bitcoin", "price of btc", "price check",
            "btc to usd", "btc to eur", "btc usd", "bitcoin usd",
            "is bitcoin up", "is bitcoin down", "spot price", "exchange rate",
            "سعر", "السعر", "سعر البتكوين", "كم سعر البتكوين", "سعر البيتكوين",
            "precio", "precio del bitcoin", "cuánto vale bitcoin", "cuanto vale bitcoin",
            "valor del bitcoin",
            "prix", "prix du bitcoin", "combien vaut bitcoin", "cours du bitcoin",
            "valeur du bitcoin",
            "\U0001F4C8", "\U0001F4C9",
        ],
        "patterns": [
            r"\bhow\s+much\s+is\s+(?:one\s+)?(?:btc|bitcoin)\b",
            r"\bhow\s+much\s+.*bitcoin\s+worth\b",
            r"\bwhat\s+.*\s+price\b",
            r"\bshow\s+.*\s+price\b",
            r"\b(?:bitcoin|btc)\s+.*worth\b",
            r"\bwhat\s+.*bitcoin\s+cost\b",
            r"\bprice\s+of\s+(?:btc|bitcoin)\b",
            r"\b(?:is\s+)?(?:btc|bitcoin)\s+(?:going\s+)?(?:up|down)\b",
            r"\bhow\s+much\s+.*one\s+bitcoin\b",
        ],
        "exact": ["price", "rate", "precio", "prix", "سعر", "السعر"],
        "strong": ["btc price", "bitcoin price", "price of", "how much is btc", "how much is bitcoin",
                   "current price", "market price", "spot price", "exchange rate"],
        "fuzzy": ["price", "precio", "prix"],
    },
    IntentType.NEW_ADDRESS: {
        "match": "substring",
        "keywords": [
            "new address", "generate address", "fresh address", "another address", "next address",
            "عنوان جديد", "توليد عنوان",
            "nueva dirección", "nueva direccion", "generar dirección",
            "nouvelle adresse",
        ],
        "patterns": [r"\b(?:generate|create)\s+(?:a\s+)?new\s+address\b"],
        "strong": ["new address", "generate address", "fresh address"],
        "bonus": 0.05,
    },
    IntentType.RECEIVE: {
        "match": "substring",
        "keywords": [
            "receive", "my address", "show address", "get address",
            "qr code", "qr", "deposit", "show qr",
            "receiving address", "give me an address", "display address",
            "display qr", "want to receive", "deposit address", "give address",
            "request payment", "invoice",
            "استقبال", "عنواني", "اظهر العنوان", "رمز qr",
            "إيداع", "عنوان الاستقبال", "اعطني عنوان",
            "recibir", "mi dirección", "mi direccion", "mostrar dirección",
            "mostrar direccion", "código qr", "codigo qr", "depositar",
            "recevoir", "mon adresse", "afficher adresse", "code qr",
            "adresse de réception",
        ],
        "patterns": [
            r"\bwhere\s+.*receive\b",
            r"\bhow\s+.*receive\b",
            r"\bshow\s+(?:me\s+)?(?:my\s+)?(?:qr|address)\b",
            r"\bgive\s+(?:me\s+)?(?:an?\s+)?address\b",
        ],
        "exact": ["receive", "deposit", "qr"],
        "strong": ["my address", "show address", "get address", "qr code", "receiving address",
                   "deposit address", "request payment", "invoice"],
        "fuzzy": ["receive", "recibir", "recevoir"],
    },
    IntentType.HIDE_BALANCE: {
        "match": "substring",
        "keywords": [
            "hide balance", "hide my balance", "hide the balance",
            "private mode", "privacy mode", "go private",
            "hide funds", "hide my funds", "conceal balance",
            "اخفاء الرصيد", "إخفاء", "وضع خاص",
            "ocultar saldo", "modo privado", "masquer le solde",
        ],
        "exact": ["hide", "privacy"],
        "strong": ["hide balance", "private mode", "privacy mode"],
    },
    IntentType.SHOW_BALANCE: {
        "match": "substring",
        "keywords": [
            "unhide", "unhide balance", "reveal balance", "reveal my balance",
            "اظهر الرصيد", "إظهار", "revelar saldo", "afficher le solde",
        ],
        "exact": ["reveal", "unhide"],
        "strong": ["unhide balance", "reveal balance"],
    },
    IntentType.REFRESH_WALLET: {
        "match": "substring",
        "keywords": [
            "refresh", "resync", "reload", "update wallet", "update balance",
            "refresh wallet", "sync wallet", "reload wallet",
            "refresh balance", "sync balance", "fetch balance", "fetch data", "pull data",
            "تحديث", "تحديث المحفظة", "مزامنة",
            "actualizar", "sincronizar", "recargar", "actualiser", "rafraîchir",
        ],
        "exact": ["refresh", "reload", "update"],
        "strong": ["refresh wallet", "sync wallet", "update wallet"],
    },
    IntentType.BALANCE: {
        "match": "substring",
        "keywords": [
            "balance", "my btc", "my bitcoin",
            "funds", "what do i have", "how many bitcoin",
            "how many sats", "how many satoshi", "how much bitcoin", "how much btc",
            "wallet balance", "total balance", "available balance",
            "show me the money", "stack check", "wallet check",
            "am i rich", "am i broke", "how much can i spend",
            "my money", "my holdings", "what have i got", "my stack", "how much money",
            "رصيدي", "رصيد", "كم عندي", "كم لدي", "ما رصيدي", "كم بتكوين", "رصيد المحفظة",
            "saldo", "cuánto tengo", "cuanto tengo", "mi saldo", "fondos", "cuántos bitcoin",
            "solde", "mon solde", "combien j'ai", "combien ai-je", "mes fonds",
        ],
        "patterns": [
            r"\bhow\s+much\s+(?:do\s+)?i\s+(?:have|own)\b",
            r"\bhow\s+much\s+(?:have\s+)?i\s+got\b",
            r"\bwhat(?:'s|\s+is)\s+my\s+(?:balance|btc|bitcoin)\b",
            r"\bwhat\s+.*\s+in\s+(?:my\s+)?wallet\b",
            r"\bcheck\s+(?:my\s+)?(?:wallet|balance|funds)\b",
            r"\bshow\s+(?:me\s+)?(?:my\s+)?(?:balance|wallet|funds)\b",
            r"\bshow\s+me\s+what\s+i\s+have\b",
        ],
        "exact": ["balance", "stack", "funds", "saldo", "solde", "رصيد"],
        "strong": ["my balance", "wallet balance", "total balance", "how much do i have",
                   "how much btc", "how much bitcoin", "what do i have", "my holdings",
                   "show balance", "show my balance", "show funds", "show my funds"],
        "fuzzy": ["balance", "saldo", "solde"],
    },
    IntentType.EXPORT_HISTORY: {
        "match": "substring",
        "keywords": [
            "export", "export history", "export transactions", "download history",
            "csv", "تصدير", "تصدير السجل",
            "exportar", "exportar historial", "descargar historial", "exporter",
        ],
        "exact": ["export", "csv"],
        "strong": ["export history", "export transactions", "download history"],
    },
    IntentType.HISTORY: {
        "match": "substring",
        "keywords": [
            "history", "transactions", "tx history", "activity",
            "transaction list", "transfers", "last transaction",
            "show sent", "show received", "pending",
            "payment history", "ledger", "log",
            "سجل", "المعاملات", "سجل المعاملات", "النشاط",
            "historial", "transacciones", "actividad reciente",
            "historique", "activité récente",
        ],
        "patterns": [
            r"\b(?:last|recent)\s+\d+\b",
            r"\bshow\s+(?:me\s+)?\d+\s+(?:transactions?|txs?|transfers?)\b",
            r"\bwhat\s+(?:did\s+)?i\s+(?:send|sent|receive|received|transfer)\b",
            r"\bwhat\s+(?:have\s+)?i\s+(?:sent|received)\b",
            r"\bshow\s+(?:me\s+)?(?:my\s+)?(?:transaction|history)\b",
            r"\b(?:recent|past|my)\s+(?:transaction|activity)\b",
        ],
        "exact": ["history", "transactions", "activity", "ledger", "log"],
        "strong": ["transaction history", "show history", "recent transactions",
                   "my transactions", "payment history", "what did i send", "what did i receive"],
        "fuzzy": ["history", "historial", "historique", "transaction", "transactions"],
    },
    IntentType.BUMP_FEE: {
        "match": "substring",
        "keywords": [
            "bump fee", "rbf", "replace by fee", "speed up", "accelerate", "bump",
            "تسريع", "زيادة الرسوم", "acelerar", "aumentar tarifa", "accélérer",
        ],
        "exact": ["rbf", "bump"],
        "strong": ["bump fee", "replace by fee", "speed up", "accelerate"],
    },
    IntentType.FEE_ESTIMATE: {
        "match": "substring",
        "keywords": [
            "fee estimate", "fee rate", "network fee", "mempool fee",
            "how much to send", "transaction fee", "current fees",
            "fee cost", "what are fees", "what are the fees",
            "fees right now", "fee info", "sat per byte",
            "sats per vbyte", "estimated fee", "check fees", "show fees",
            "sending cost", "cost to send",
            "رسوم", "الرسوم", "رسوم الشبكة", "تقدير الرسوم", "كم الرسوم",
            "comisión", "comision", "comisiones", "tarifa", "tarifas de red",
            "frais", "frais de réseau", "frais de transaction", "estimation des frais",
        ],
        "patterns": [
            r"\bhow\s+much\s+(?:are\s+)?(?:the\s+)?fees?\b",
            r"\bwhat(?:'s|\s+is|\s+are)\s+(?:the\s+)?(?:current\s+)?fees?\b",
            r"\bhow\s+(?:expensive|much)\s+(?:is\s+it\s+)?to\s+send\b",
            r"\bhow\s+much\s+(?:does\s+it\s+)?cost\s+to\s+send\b",
            r"\bshow\s+(?:me\s+)?(?:the\s+)?fees?\b",
            r"\bcurrent\s+fee\b",
        ],
        "exact": ["fee", "fees", "gas", "frais", "comisiones", "رسوم", "الرسوم"],
        "strong": ["fee estimate", "fee rate", "network fee", "transaction fee",
                   "how much to send", "sat per byte", "mempool fee"],
        "fuzzy": ["fees", "comision", "frais"],
    },
    IntentType.WALLET_HEALTH: {
        "match": "substring",
        "keywords": [
            "wallet health", "health check", "wallet status", "wallet info",
            "wallet summary", "wallet overview", "wallet details",
            "how is my wallet", "wallet report",
            "صحة المحفظة", "حالة المحفظة", "تقرير المحفظة",
            "salud de la cartera", "estado de la cartera", "resumen de la cartera",
            "état du portefeuille",
        ],
        "strong": ["wallet health", "health check", "wallet status"],
    },
    IntentType.UTXO_LIST: {
        "match": "substring",
        "keywords": [
            "utxo", "utxos", "unspent", "list utxo", "show utxo",
            "unspent outputs", "coin control", "coin selection", "my coins", "inputs",
            "المخرجات غير المنفقة", "salidas no gastadas", "sorties non dépensées",
        ],
        "patterns": [
            r"\b(?:show|list)\s+(?:me\s+)?(?:my\s+)?utxos?\b",
            r"\bcoin\s+(?:control|selection)\b",
        ],
        "exact": ["utxo", "utxos", "unspent", "inputs"],
        "strong": ["show utxo", "list utxo", "coin control", "coin selection", "unspent outputs"],
    },
    IntentType.NETWORK_STATUS: {
        "match": "substring",
        "keywords": [
            "network status", "network info", "connection status",
            "is the network working", "node status", "server status",
            "blockchain status", "block height", "current block",
            "connectivity", "sync status", "syncing",
            "am i connected", "are we connected", "connection check",
            "حالة الشبكة", "معلومات الشبكة",
            "estado de la red", "información de red", "état du réseau",
        ],
        "patterns": [
            r"\bis\s+(?:the\s+)?network\s+(?:up|down|ok|running|online|offline)\b",
        ],
        "exact": ["network", "sync", "syncing"],
        "strong": ["network status", "blockchain status", "block height", "node status", "current block"],
    },
    IntentType.ABOUT: {
        "match": "substring",
        "keywords": [
            "about this app", "about the app", "who are you",
            "what are you", "app info", "app version",
            "عن التطبيق", "من أنت", "إصدار",
            "acerca de", "sobre la app", "quién eres", "quien eres",
            "à propos", "qui es-tu", "version de l'app",
        ],
        "exact": ["about", "version"],
        "strong": ["about this app", "who are you", "app version"],
    },
    IntentType.SETTINGS: {
        "match": "substring",
        "keywords": [
            "settings", "preferences", "configure",
            "configuration", "change settings", "open settings", "show settings",
            "إعدادات", "اعدادات", "الإعدادات",
            "ajustes", "configuración", "configuracion", "preferencias",
            "paramètres", "parametres", "réglages", "reglages",
        ],
        "exact": ["settings", "preferences", "ajustes", "paramètres", "إعدادات"],
        "strong": ["open settings", "show settings", "change settings"],
    },
    IntentType.EXPLAIN: {
        "match": "substring",
        "keywords": [
            "what is bitcoin", "explain bitcoin", "tell me about",
            "teach me", "learn about", "educate me", "help me understand",
            "ما هو البتكوين", "ما هو البيتكوين", "اشرح", "علمني",
            "qué es bitcoin", "que es bitcoin", "explícame", "explicame",
            "enséñame", "ensename",
            "qu'est-ce que bitcoin", "qu'est-ce que le bitcoin",
            "explique-moi", "apprends-moi",
        ],
        "patterns": [
            r"\bwhat(?:'s|\s+is|\s+are)\s+(?:an?\s+|the\s+)?"
            r"(?:bitcoin|blockchain|mining|halving|mempool|segwit|taproot|lightning|"
            r"seed\s+phrase|private\s+keys?|utxos?)\b",
            r"\bexplain\s+.*(?:bitcoin|blockchain|mining|halving|mempool|segwit|taproot|"
            r"lightning|seed|private\s+key|utxo)",
            r"\bhow\s+does\s+(?:bitcoin|the\s+blockchain|blockchain|mining|lightning|"
            r"segwit|taproot|the\s+mempool|halving)\s+work\b",
        ],
        "strong": ["what is bitcoin", "explain bitcoin", "tell me about", "teach me",
                   "educate me", "help me understand", "what is blockchain", "what is mining"],
    },
    IntentType.HELP: {
        "match": "substring",
        "keywords": [
            "help", "what can you do", "commands", "how to",
            "what do you do", "how does this work", "instructions",
            "guide", "tutorial", "what commands", "list commands",
            "show commands", "available commands", "menu",
            "what are my options", "what can i do", "how do i",
            "documentation", "how to use",
            "مساعدة", "ساعدني", "ماذا تفعل", "الأوامر",
            "ayuda", "ayúdame", "ayudame", "qué puedes hacer", "que puedes hacer", "comandos",
            "aide", "aidez-moi", "aide-moi", "comment faire", "que peux-tu faire", "commandes",
            "❓", "\U0001F198",
        ],
        "patterns": [
            r"\bwhat\s+can\s+(?:you|i)\s+do\b",
            r"\bhow\s+(?:do\s+)?i\s+(?:use|start|begin)\b",
            r"\bhow\s+does\s+(?:this|it)\s+work\b",
            r"\bwhat\s+.*commands\b",
        ],
        "exact": ["help", "?", "commands", "guide", "tutorial", "menu", "ayuda", "aide", "مساعدة"],
        "strong": ["what can you do", "how do i", "how to use", "what commands", "how does this work"],
        "fuzzy": ["help", "ayuda", "aide"],
    },
    IntentType.GREETING: {
        "match": "prefix",
        "keywords": [
            "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
            "howdy", "sup", "what's up", "whats up", "yo",
            "heya", "g'day", "greetings", "gm", "gn",
            "what's good", "whats good", "what's happening", "whats happening",
            "how's it going", "hows it going", "how ya doing", "how you doing",
            "hey hey", "yo yo",
            "مرحبا", "سلام", "اهلا", "أهلا", "صباح الخير", "مساء الخير",
            "hola", "buenos días", "buenos dias", "buenas tardes", "buenas noches", "qué tal",
            "bonjour", "bonsoir", "salut", "coucou", "bonne journée",
        ],
        "emoji": ["\U0001F44B", "\U0001F64B"],
    },
}

# Follow-ups to a price or balance answer ("and EUR?", "what about pounds?", "in sats?")
FOLLOW_UP_PREFIXES = [
    "what about in ", "how about in ", "and in ", "what about ", "how about ",
    "and ", "in ", "also ", "plus ",
]
FOLLOW_UP_CURRENCIES: Dict[str, str] = {
    "usd": "USD", "dollar": "USD", "dollars": "USD", "bucks": "USD",
    "eur": "EUR", "euro": "EUR", "euros": "EUR",
    "gbp": "GBP", "pound": "GBP", "pounds": "GBP", "quid": "GBP",
    "jpy": "JPY", "yen": "JPY", "cad": "CAD", "aud": "AUD", "chf": "CHF",
    "cny": "CNY", "yuan": "CNY", "inr": "INR", "rupees": "INR",
    "ngn": "NGN", "naira": "NGN", "brl": "BRL", "mxn": "MXN",
}
SATS_WORDS = ["sats", "sat", "satoshi", "satoshis"]
BALANCE_FOLLOW_UPS = [
    "is that a lot", "is that good", "is that enough", "is that much",
    "is that little", "is that ok", "how much is that",
]

# Sending phrased in the past tense is a history question
PAST_TENSE_SEND = [
    "sent", "i sent", "what i sent", "what did i send", "already sent",
    "was sent", "been sent", "have sent", "had sent",
]

EXPLAIN_TOPICS: List[Tuple[str, str]] = [
    ("seed phrase", r"seed\s*phrase|recovery\s+phrase|mnemonic"),
    ("private key", r"private\s+keys?"),
    ("blockchain", r"blockchain|block\s+chain|بلوكتشين"),
    ("halving", r"halving|halvening"),
    ("mempool", r"mempool"),
    ("segwit", r"segwit|segregated\s+witness"),
    ("taproot", r"taproot"),
    ("lightning", r"lightning"),
    ("utxo", r"utxos?|unspent"),
    ("mining", r"mining|miners?|minería|minage"),
    ("bitcoin", r"bitcoin|btc|بتكوين|البيتكوين"),
]

NEGATION_PHRASES = [
    "not sure", "don't want", "don't think", "i'm not", "im not",
    "maybe not", "not yet", "shouldn't", "wouldn't", "i won't",
    "changed my mind", "not ready", "hold on", "hold up", "wait",
    "espera", "attends",
]

# Ordered by precedence; the first rule that fires wins
EMOTION_RULES: List[Tuple[SocialSignal, float, List[str]]] = [
    (SocialSignal.GRATITUDE, 0.9, ["thanks", "thank you", "thx", "ty", "appreciate", "grateful",
                                   "you're the best", "merci", "gracias", "danke", "شكرا", "شكرًا"]),
    (SocialSignal.AFFIRMATION, 0.6, ["great", "perfect", "nice", "cool", "sweet", "good",
                                     "genial", "perfecto", "parfait", "ممتاز"]),
    (SocialSignal.FRUSTRATION, 0.8, ["broken", "doesn't work", "not working", "hate this",
                                     "frustrated", "annoyed", "why won't", "stupid",
                                     "wtf", "what the", "come on", "ugh", "useless"]),
    (SocialSignal.CONFUSION, 0.8, ["confused", "don't understand", "what does that mean",
                                   "i don't get it", "huh"]),
    (SocialSignal.HUMOR, 0.7, ["lol", "haha", "funny", "hilarious", "rofl", "lmao"]),
]

_SAD_WORDS = ["lost", "scammed", "stolen", "hacked", "gone", "disappeared"]
_MONEY_WORDS = ["bitcoin", "btc", "wallet", "coin", "crypto", "funds", "money", "sats"]
_EXCITEMENT_WORDS = ["awesome", "amazing", "let's go", "lets go", "to the moon", "\U0001F680"]


@lru_cache(maxsize=4096)
def _phrase_regex(phrase: str, whole_word: bool) -> re.Pattern:
    escaped = re.escape(phrase)
    if whole_word or len(phrase) <= 3:
        return re.compile(rf"(?<!\w){escaped}(?!\w)")
    return re.compile(rf"(?<!\w){escaped}")


def contains_phrase(text: str, phrase: str, whole_word: bool = False) -> bool:
    """Phrase lookup anchored at a word start; short or whole-word phrases need both edges."""
    if not phrase:
        return False
    if not phrase[0].isalnum():
        # Emoji and punctuation keywords have no word edges
        return phrase in text
    return _phrase_regex(phrase, whole_word).search(text) is not None


def contains_negation(text: str) -> bool:
    """Hesitation or negation anywhere in the text ("ok wait", "yes but not sure")."""
    lower = normalize_for_matching(text)
    return any(contains_phrase(lower, phrase, whole_word=True) for phrase in NEGATION_PHRASES)


def starts_with_keyword(text: str, keyword: str) -> bool:
    return text == keyword or any(text.startswith(keyword + sep) for sep in (" ", ",", "!"))


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with a rolling row."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def fuzzy_matches(word: str, keywords: List[str]) -> bool:
    """Single-token typo tolerance: 1 edit up to five letters, 2 above."""
    for keyword in keywords:
        if len(keyword) <= 2:
            if word == keyword:
                return True
            continue
        max_distance = 1 if len(keyword) <= 5 else 2
        if levenshtein_distance(word, keyword) <= max_distance:
            return True
    return False


class PatternClassifier:
    """Scores every intent category for a piece of text and builds the winning intent."""

    def __init__(self, extractor: Optional[EntityExtractor] = None, min_confidence: Optional[float] = None):
        self.extractor = extractor or EntityExtractor()
        self.min_confidence = settings.min_confidence if min_confidence is None else min_confidence
        self.intent_patterns: Dict[IntentType, List[re.Pattern]] = {
            intent: [re.compile(p, re.IGNORECASE) for p in rules.get("patterns", [])]
            for intent, rules in CATEGORY_RULES.items()
        }
        self._topic_patterns = [(topic, re.compile(rf"\b(?:{p})", re.IGNORECASE)) for topic, p in EXPLAIN_TOPICS]

    # Category matching
    def _category_hit(self, intent: IntentType, text: str) -> Optional[Tuple[MatchStrength, str]]:
        """Return (strength, source) when the category fires for ``text``."""
        rules = CATEGORY_RULES[intent]
        keywords = rules.get("keywords", [])
        exact_words = rules.get("exact", [])
        single_token = " " not in text

        if rules.get("requires_digit") and not re.search(r"\d", text):
            keyword_hit = False
        elif rules["match"] == "prefix":
            keyword_hit = any(starts_with_keyword(text, kw) for kw in keywords)
            keyword_hit = keyword_hit or any(e in text for e in rules.get("emoji", []))
            if keyword_hit:
                strength = MatchStrength.EXACT if text in keywords else MatchStrength.STRONG
                return strength, "keyword"
            return None
        else:
            whole_word = rules["match"] == "word"
            keyword_hit = any(contains_phrase(text, kw, whole_word) for kw in keywords)

        regex_hit = any(p.search(text) for p in self.intent_patterns[intent])
        exact_hit = text in exact_words

        if exact_hit:
            return MatchStrength.EXACT, "keyword"
        if regex_hit:
            return MatchStrength.STRONG, "regex"
        if keyword_hit:
            if rules.get("strong_always") or any(contains_phrase(text, p) for p in rules.get("strong", [])):
                return MatchStrength.STRONG, "keyword"
            return MatchStrength.WEAK, "keyword"
        if single_token and rules.get("fuzzy") and fuzzy_matches(text, rules["fuzzy"]):
            return MatchStrength.WEAK, "fuzzy"
        return None

    def _is_past_tense_send(self, text: str) -> bool:
        return any(contains_phrase(text, phrase, whole_word=True) for phrase in PAST_TENSE_SEND)

    def scored_match(self, text: str, entities: Optional[ParsedEntity] = None) -> List[IntentScore]:
        """
        Score every category for ``text``.

        Args:
            text: Raw or normalized user text
            entities: Entities already extracted from the same text, if any

        Returns:
            Scores sorted by confidence, evaluation order breaking ties
        """
        normalized = normalize_for_matching(text).strip()
        if not normalized:
            return []
        matching = normalized.rstrip(" .!?") or normalized

        scores: List[IntentScore] = []
        for intent in CATEGORY_RULES:
            if intent == IntentType.SEND and self._is_past_tense_send(matching):
                continue
            hit = self._category_hit(intent, matching)
            if hit is None:
                continue
            strength, source = hit
            confidence = strength.confidence
            bonus = CATEGORY_RULES[intent].get("bonus")
            if bonus:
                confidence = min(confidence + bonus, MatchStrength.EXACT.confidence)
            if intent == IntentType.SEND and entities is not None and entities.address and entities.amount is not None:
                confidence = max(confidence, MatchStrength.STRONG.confidence)
            scores.append(IntentScore(intent=intent, confidence=confidence, source=source))

        if entities is not None and entities.txid:
            scores.append(IntentScore(intent=IntentType.TRANSACTION_DETAIL,
                                      confidence=MatchStrength.STRONG.confidence, source="regex"))

        # A greeting prefix only counts when nothing else was asked ("hey, send 0.01 ...")
        if any(score.intent != IntentType.GREETING for score in scores):
            scores = [score for score in scores if score.intent != IntentType.GREETING]

        # sorted() is stable, so equal confidences keep evaluation order
        return sorted(scores, key=lambda score: score.confidence, reverse=True)

    def classify(self, text: str, entities: Optional[ParsedEntity] = None,
                 last_intent: Optional[WalletIntent] = None) -> ClassificationResult:
        """
        Classify ``text`` into one concrete WalletIntent.

        ``last_intent`` is the previous user intent; when it was a price or
        balance question, short follow-ups ("and EUR?") are read against it.
        """
        if entities is None:
            entities = self.extractor.extract(text)
        raw = normalize_text(text)
        scores = self.scored_match(text, entities)

        top = scores[0] if scores and scores[0].confidence >= self.min_confidence else None
        follow_up = self.follow_up(text, last_intent, scan_whole_text=top is None) if last_intent else None
        if follow_up is not None:
            intent, confidence = follow_up, MatchStrength.STRONG.confidence
            logger.debug(f"Follow-up to {last_intent.type.value}: {intent.type.value}")
        elif top is not None:
            intent = self._build_intent(top.intent, raw, entities)
            confidence = top.confidence
        else:
            intent, confidence = self._fallback(raw, entities)

        logger.debug(f"Classified '{raw[:60]}' as {intent.type.value} ({confidence:.2f})")
        return ClassificationResult(text=raw, intent=intent, confidence=confidence,
                                    scores=scores, entities=entities)

    # Intent building
    def _build_intent(self, intent_type: IntentType, raw: str, entities: ParsedEntity) -> WalletIntent:
        if intent_type == IntentType.SEND:
            return self._send_from(entities)
        if intent_type == IntentType.PRICE:
            if entities.is_fiat:
                return WalletIntent.convert_amount(entities.amount, entities.currency)
            return WalletIntent.price(entities.currency)
        if intent_type == IntentType.CONVERT_AMOUNT:
            return self._convert_from(entities)
        if intent_type == IntentType.HISTORY:
            return WalletIntent.history(entities.count)
        if intent_type == IntentType.BUMP_FEE:
            return WalletIntent.bump_fee(entities.txid)
        if intent_type == IntentType.TRANSACTION_DETAIL:
            return WalletIntent.transaction_detail(entities.txid)
        if intent_type == IntentType.EXPLAIN:
            return WalletIntent.explain(self.detect_topic(raw))
        if intent_type == IntentType.UNKNOWN:
            return WalletIntent.unknown(raw)
        return WalletIntent.simple(intent_type)

    def _send_from(self, entities: ParsedEntity) -> WalletIntent:
        address = entities.address if entities.address and AddressValidator.is_valid(entities.address) else None
        if entities.is_fiat:
            return WalletIntent.send(amount=entities.amount, address=address, fee_level=entities.fee_level,
                                     fee_rate=entities.fee_rate, currency=entities.currency)
        return WalletIntent.send(amount=entities.amount, unit=entities.unit if entities.amount is not None else None,
                                 address=address, fee_level=entities.fee_level, fee_rate=entities.fee_rate)

    def _convert_from(self, entities: ParsedEntity) -> WalletIntent:
        if entities.amount is None or entities.amount <= 0:
            return WalletIntent.price(entities.currency)
        if entities.is_fiat:
            return WalletIntent.convert_amount(entities.amount, entities.currency)
        currency = entities.currency or settings.default_fiat_currency
        return WalletIntent.convert_amount(entities.amount, currency, unit=entities.unit or BitcoinUnit.BTC)

    def _fallback(self, raw: str, entities: ParsedEntity) -> Tuple[WalletIntent, float]:
        if entities.address and AddressValidator.is_valid(entities.address):
            return self._send_from(entities), MatchStrength.WEAK.confidence
        if entities.txid:
            return WalletIntent.transaction_detail(entities.txid), MatchStrength.STRONG.confidence
        if entities.is_fiat:
            return WalletIntent.convert_amount(entities.amount, entities.currency), MatchStrength.WEAK.confidence
        return WalletIntent.unknown(raw or "?"), 0.0

    def follow_up(self, text: str, last_intent: WalletIntent,
                  scan_whole_text: bool = False) -> Optional[WalletIntent]:
        """
        Read a short follow-up against the previous price or balance question.

        Args:
            text: User text
            last_intent: Previous user intent
            scan_whole_text: Also look for a currency word anywhere in the text
                (only when nothing else matched, so "send 5 dollars" stays a send)

        Returns:
            The follow-up intent, or None when ``text`` is not a follow-up
        """
        if last_intent.type not in (IntentType.PRICE, IntentType.BALANCE):
            return None
        lower = normalize_for_matching(text).strip()
        cleaned = lower
        for prefix in FOLLOW_UP_PREFIXES:
            if cleaned.startswith(prefix):
                cleaned = cleaned[len(prefix):]
                break
        cleaned = cleaned.strip(" ?!.,")

        if cleaned in FOLLOW_UP_CURRENCIES:
            return WalletIntent.price(FOLLOW_UP_CURRENCIES[cleaned])
        if cleaned in SATS_WORDS:
            # Balance in sats is the balance again; a price in sats has no fiat side
            if last_intent.type == IntentType.BALANCE:
                return WalletIntent.simple(IntentType.BALANCE)
            return WalletIntent.price()

        if last_intent.type != IntentType.BALANCE or not scan_whole_text:
            return None
        for word, code in FOLLOW_UP_CURRENCIES.items():
            if contains_phrase(lower, word, whole_word=True):
                return WalletIntent.price(code)
        if any(contains_phrase(lower, phrase) for phrase in BALANCE_FOLLOW_UPS):
            return WalletIntent.simple(IntentType.BALANCE)
        return None

    def detect_topic(self, text: str) -> Optional[str]:
        """First educational topic mentioned in ``text``."""
        for topic, pattern in self._topic_patterns:
            if pattern.search(text):
                return topic
        return None

    # Social signals
    def is_greeting(self, text: str) -> bool:
        matching = normalize_for_matching(text).strip()
        return self._category_hit(IntentType.GREETING, matching) is not None

    def detect_emotion(self, text: str) -> Tuple[SocialSignal, float]:
        """Emotional tone of ``text`` with a rough confidence."""
        lower = normalize_for_matching(text).strip()
        for signal, confidence, words in EMOTION_RULES:
            if signal == SocialSignal.AFFIRMATION:
                if any(starts_with_keyword(lower.rstrip(".!"), word) for word in words):
                    return signal, confidence
                continue
            if any(contains_phrase(lower, word) for word in words):
                return signal, confidence
        if any(contains_phrase(lower, w) for w in _SAD_WORDS) and any(contains_phrase(lower, w) for w in _MONEY_WORDS):
            return SocialSignal.SADNESS, 0.8
        if lower.endswith("!!") or any(contains_phrase(lower, w) for w in _EXCITEMENT_WORDS):
            return SocialSignal.EXCITEMENT, 0.6
        return SocialSignal.NEUTRAL, 1.0

    def social_signal(self, text: str) -> SocialSignal:
        """
        Single social reading of a message.
        Greeting outranks every emotion, so "hi thanks" is a greeting
        while "thanks!" is gratitude.
        """
        if self.is_greeting(text):
            return SocialSignal.GREETING
        signal, _ = self.detect_emotion(text)
        return signal


pattern_classifier = PatternClassifier()
