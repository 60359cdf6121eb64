from .database import Product, ReferenceStore, SalesAccount, init_store

__all__ = ["Product", "ReferenceStore", "SalesAccount", "init_store"]
