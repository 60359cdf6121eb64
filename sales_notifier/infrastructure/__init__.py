# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - whatsapp/: session lifecycle, delivery retries, WhatsApp Web automation
# - persistence/: SQLite-backed key/hash reference store
# - importer/: Excel/CSV import of outlets and products
# - config/: Environment and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
