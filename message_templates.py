from __future__ import annotations

import re
from collections import Counter
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

MESSAGE_TEMPLATES: dict[str, str] = {
    # Welcome and navigation
    "welcome_message": "🚀 *Welcome to Molotov Bot*\n\n💎 Your premium digital marketplace for cryptocurrency products.",
    "welcome_back_message": (
        "👋 Welcome back {firstName} to the Digital Syndicate.\n\n"
        "🛒 Browse a curated stash of:\n"
        "• ⚡ Instant Enrollments\n"
        "• 📲 Verified App & Bank Open-Ups\n"
        "• 🛰️ Elite Proxy Networks\n"
        "• ☎️ Clean, Trusted Phone Numbers\n\n"
        "💳 Payments via Bitcoin or Litecoin only.\n\n"
        "👇 Tap below to dive in or reach out to Admin if you need priority access:"
    ),
    "browse_categories_button": "🛍️ Browse Categories",
    "select_language": "🌍 *Choose Your Language*\n\nPlease select your preferred language to continue:",
    "select_language_short": "Select your language",
    "language_updated": "✅ *Language Updated Successfully*\n\n🌍 Your interface is now in {language}",
    "language_updated_loading": "Language updated! Loading categories...",
    "welcome_complete": "✅ *Setup Complete!*\n\nWelcome to Molotov Bot! Your language has been set to {language}.",
    "language_error": "❌ *Error Updating Language*\n\nPlease try again.",
    # Categories and products
    "main_categories": "📂 *Main Categories*",
    "browse_categories": "Browse our available product categories below.",
    "select_category": "*Choose a Category*\n\nSelect a category below to browse products:",
    "products_in_category": "*Products in this Category*",
    "no_categories": "🚧 *No Categories Available*\n\nCategories will be added soon.",
    "no_products": "📭 *No Products Found*\n\nNo products available in this category.",
    "no_products_page": "📭 *Empty Page*\n\nNo products on this page.",
    # Buttons and actions
    "contact_admin": "📞 Contact Admin",
    "back_to_categories": "🔙 Back to Categories",
    "buy_product": "🛍️ Buy",
    "buy_button": "Buy",
    "previous_page": "⬅️ Previous",
    "next_page": "➡️ Next",
    "change_language": "🌍 Change Language",
    # Errors and status
    "error_loading": "❌ *Loading Error*\n\nPlease try again.",
    "error_categories": "❌ *Categories Error*\n\nCould not load categories.",
    "error_products": "❌ *Products Error*\n\nError loading products.",
    "invalid_category": "⚠️ *Invalid Category*\n\nPlease select a valid category.",
    "invalid_selection": "⚠️ *Invalid Selection*\n\nPlease make a valid selection.",
    "invalid_pagination": "⚠️ *Invalid Page*\n\nPage not found.",
    "unknown_action": "🤷 *Unknown Action*\n\nPlease try again.",
    "error_processing": "⚠️ *Processing Error*\n\nError processing your request.",
    "please_wait": "⏱️ *Please Wait*\n\nToo many requests. Please wait.",
    # Payment and orders
    "price_label": "💰 Price",
    "order_id": "📋 Order ID",
    "payment_pending": "⏳ *Payment Pending*",
    "payment_confirmed": "✅ *Payment Confirmed*",
    "order_completed": "🎉 *Order Completed*",
    "order_summary": "Order Summary",
    "product_label": "Product",
    "description_label": "Description",
    "date_label": "Date",
    "amount_label": "Amount",
    "currency_label": "Currency",
    "payment_options": "Secure Payment Options",
    "choose_payment_method": "Choose your preferred cryptocurrency:",
    "bitcoin_payment": "Bitcoin (BTC)",
    "litecoin_payment": "Litecoin (LTC)",
    "payment_guide": "Payment Guide",
    "back_to_products": "Back to Products",
    "no_description": "No description available",
    "payment_instructions": "Payment Instructions",
    "send_payment_to": "Send Payment To",
    "important_label": "Important",
    "send_exactly": "Send exactly {amount} worth of {currency}",
    "double_check_address": "Double-check the address above",
    "confirmation_time": "Payment may take 10-60 minutes to confirm",
    "keep_transaction_id": "Keep your transaction ID for reference",
    "after_sending_payment": "After sending payment, click the button below",
    "sent_payment": "I've Sent Payment",
    "copy_address": "Copy Address",
    "payment_help": "Payment Help",
    "refresh_status": "Refresh Status",
    "back_to_store": "Back to Store",
    "cancel_order": "Cancel Order",
    # Admin and system
    "admin_panel": "🔧 *Admin Panel*",
    "wallet_management": "💳 *Wallet Management*",
    "system_online": "🟢 *System Online*",
    "bot_restarted": "🔄 *Bot Restarted*",
    "maintenance_mode": "🔧 *Maintenance Mode*",
    "service_unavailable": "⚠️ *Service Unavailable*\n\nTemporarily unavailable.",
    # Bot profile (setMyDescription / setMyShortDescription)
    "bot_description": (
        "🚀 Molotov Bot - Your premium digital marketplace for cryptocurrency products. "
        "Secure payments via Bitcoin and Litecoin. Browse verified accounts, proxy networks, "
        "phone numbers, and more. Trusted by professionals worldwide."
    ),
    "bot_short_description": "💎 Premium digital marketplace for crypto products. Secure, verified, trusted.",
    # Command descriptions for the bot menu
    "command_start_desc": "Start shopping and browse categories",
    "command_help_desc": "Get help and contact support",
}


def placeholders(text: str) -> Counter:
    return Counter(PLACEHOLDER_RE.findall(text or ""))


def placeholders_intact(source: str, translated: str) -> bool:
    return placeholders(source) == placeholders(translated)


def apply_replacements(text: str, replacements: Optional[Mapping[str, object]] = None) -> str:
    """Substitute ``{name}`` tokens; names missing from ``replacements`` stay verbatim."""
    if not replacements or not text:
        return text

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name in replacements:
            return str(replacements[name])
        return match.group(0)

    return PLACEHOLDER_RE.sub(_sub, text)


class TemplateCatalogue:
    def __init__(self, templates: Optional[Mapping[str, str]] = None) -> None:
        source = MESSAGE_TEMPLATES if templates is None else templates
        self._templates: Mapping[str, str] = MappingProxyType(dict(source))

    def __contains__(self, key: object) -> bool:
        return key in self._templates

    def __iter__(self) -> Iterator[str]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def get(self, key: str) -> Optional[str]:
        return self._templates.get(key)

    def keys(self) -> list[str]:
        return list(self._templates)

    def items(self):
        return self._templates.items()

    def as_dict(self) -> dict[str, str]:
        return dict(self._templates)

    def source_text(self, key_or_text: str) -> str:
        return self._templates.get(key_or_text, key_or_text)
