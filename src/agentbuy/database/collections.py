"""MongoDB collection names."""

USERS = "users"
PROFILES = "profiles"
CARGOS = "cargos"
ORDERS = "orders"
CARD_TRANSACTIONS = "card_transactions"
AGENT_REVIEWS = "agent_reviews"
BANNERS = "banners"
PRODUCT_SHOWCASES = "product_showcases"
AGENT_SPECIALTIES = "agent_specialties"
CHAT_NOTIFICATIONS = "chat_notifications"
