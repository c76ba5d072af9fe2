"""Green Horizons inventory, sales and Zoho Inventory sync service."""

__version__ = "0.1.0"
