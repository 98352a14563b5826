from __future__ import annotations

from typing import Dict, Optional

# Hand-authored translations of the most visible phrases, keyed by the exact
# English source text. Used when the backend is down or slow.
_FALLBACKS: Dict[str, Dict[str, str]] = {
    "ru": {
        "Welcome to Molotov Bot": "Добро пожаловать в бота Molotov",
        "Select your language": "Выберите ваш язык",
        "Language set successfully": "Язык успешно установлен",
        "Main Categories": "Основные категории",
        "Contact Admin": "Связаться с администратором",
        "Buy": "Купить",
        "Back to Categories": "Вернуться к категориям",
        "No products found": "Товары не найдены",
        "Error loading": "Ошибка загрузки",
        "Invalid selection": "Неверный выбор",
        "Price": "Цена",
        "Products in this Category": "Товары в этой категории",
    },
    "zh": {
        "Welcome to Molotov Bot": "欢迎使用 Molotov 机器人",
        "Select your language": "选择您的语言",
        "Language set successfully": "语言设置成功",
        "Main Categories": "主要类别",
        "Contact Admin": "联系管理员",
        "Buy": "购买",
        "Back to Categories": "返回类别",
        "No products found": "未找到产品",
        "Error loading": "加载错误",
        "Invalid selection": "无效选择",
        "Price": "价格",
        "Products in this Category": "此类别中的产品",
    },
    "es": {
        "Welcome to Molotov Bot": "Bienvenido al Bot Molotov",
        "Select your language": "Selecciona tu idioma",
        "Language set successfully": "Idioma configurado exitosamente",
        "Main Categories": "Categorías principales",
        "Contact Admin": "Contactar administrador",
        "Buy": "Comprar",
        "Back to Categories": "Volver a categorías",
        "No products found": "No se encontraron productos",
        "Error loading": "Error al cargar",
        "Invalid selection": "Selección inválida",
        "Price": "Precio",
        "Products in this Category": "Productos en esta categoría",
    },
    "fr": {
        "Welcome to Molotov Bot": "Bienvenue sur le Bot Molotov",
        "Select your language": "Sélectionnez votre langue",
        "Language set successfully": "Langue définie avec succès",
        "Main Categories": "Catégories principales",
        "Contact Admin": "Contacter l'administrateur",
        "Buy": "Acheter",
        "Back to Categories": "Retour aux catégories",
        "No products found": "Aucun produit trouvé",
        "Error loading": "Erreur de chargement",
        "Invalid selection": "Sélection invalide",
        "Price": "Prix",
        "Products in this Category": "Produits dans cette catégorie",
    },
    "de": {
        "Welcome to Molotov Bot": "Willkommen bei Molotov Bot",
        "Select your language": "Wählen Sie Ihre Sprache",
        "Language set successfully": "Sprache erfolgreich eingestellt",
        "Main Categories": "Hauptkategorien",
        "Contact Admin": "Administrator kontaktieren",
        "Buy": "Kaufen",
        "Back to Categories": "Zurück zu Kategorien",
        "No products found": "Keine Produkte gefunden",
        "Error loading": "Fehler beim Laden",
        "Invalid selection": "Ungültige Auswahl",
        "Price": "Preis",
        "Products in this Category": "Produkte in dieser Kategorie",
    },
}


class FallbackDictionary:
    def __init__(self, entries: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self._entries = entries if entries is not None else _FALLBACKS

    def lookup(self, lang: str, text: str) -> Optional[str]:
        return self._entries.get(lang, {}).get(text)

    def languages(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return sum(len(phrases) for phrases in self._entries.values())
