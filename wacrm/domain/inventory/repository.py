"""Inventory repository - Database operations on an agent's inventory categories and items"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.orm import Session

from ...models_tenant import TenantTables, row_to_dict


class InventoryRepository:
    """Repository for inventory database operations"""

    # Categories

    @staticmethod
    def list_categories(
        db: Session, tables: TenantTables, search: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> list[dict]:
        """Categories by name, each with its item count"""
        categories = tables.inventory_categories
        items = tables.inventory_items
        item_counts = (
            select(items.c.category_id, func.count().label("item_count")).group_by(items.c.category_id).subquery()
        )
        query = select(categories, func.coalesce(item_counts.c.item_count, 0).label("item_count")).select_from(
            categories.outerjoin(item_counts, categories.c.id == item_counts.c.category_id)
        )
        if search:
            query = query.where(categories.c.name.ilike(f"%{search}%"))
        query = query.order_by(categories.c.name.asc())
        if limit > 0:
            query = query.limit(limit)
        if offset > 0:
            query = query.offset(offset)
        return [row_to_dict(row) for row in db.execute(query)]

    @staticmethod
    def get_category(db: Session, tables: TenantTables, category_id: int) -> Optional[dict]:
        categories = tables.inventory_categories
        return row_to_dict(db.execute(select(categories).where(categories.c.id == category_id)).first())

    @staticmethod
    def find_category_by_name(db: Session, tables: TenantTables, name: str) -> Optional[dict]:
        categories = tables.inventory_categories
        row = db.execute(select(categories).where(func.lower(categories.c.name) == name.lower())).first()
        return row_to_dict(row)

    @staticmethod
    def create_category(db: Session, tables: TenantTables, **values) -> int:
        now = datetime.utcnow()
        result = db.execute(insert(tables.inventory_categories).values(created_at=now, updated_at=now, **values))
        db.commit()
        return result.inserted_primary_key[0]

    @staticmethod
    def update_category(db: Session, tables: TenantTables, category_id: int, **values) -> bool:
        values["updated_at"] = datetime.utcnow()
        categories = tables.inventory_categories
        result = db.execute(update(categories).where(categories.c.id == category_id).values(**values))
        db.commit()
        return result.rowcount > 0

    @staticmethod
    def count_category_items(db: Session, tables: TenantTables, category_id: int) -> int:
        items = tables.inventory_items
        return db.execute(
            select(func.count()).select_from(items).where(items.c.category_id == category_id)
        ).scalar_one()

    @staticmethod
    def delete_category(db: Session, tables: TenantTables, category_id: int) -> bool:
        categories = tables.inventory_categories
        result = db.execute(delete(categories).where(categories.c.id == category_id))
        db.commit()
        return result.rowcount > 0

    # Items

    @staticmethod
    def _item_query(tables: TenantTables):
        items = tables.inventory_items
        categories = tables.inventory_categories
        return select(
            items,
            categories.c.name.label("category_name"),
            categories.c.color.label("category_color"),
        ).select_from(items.outerjoin(categories, items.c.category_id == categories.c.id))

    @staticmethod
    def list_items(
        db: Session,
        tables: TenantTables,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        """Items newest first. category filters by id or by category name."""
        items = tables.inventory_items
        query = InventoryRepository._item_query(tables)
        if category:
            if category.isdigit():
                query = query.where(items.c.category_id == int(category))
            else:
                query = query.where(tables.inventory_categories.c.name == category)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(items.c.name.ilike(pattern), items.c.description.ilike(pattern), items.c.sku.ilike(pattern))
            )
        query = query.order_by(items.c.created_at.desc(), items.c.id.desc())
        if limit > 0:
            query = query.limit(limit)
        if offset > 0:
            query = query.offset(offset)
        return [row_to_dict(row) for row in db.execute(query)]

    @staticmethod
    def get_item(db: Session, tables: TenantTables, item_id: int) -> Optional[dict]:
        query = InventoryRepository._item_query(tables).where(tables.inventory_items.c.id == item_id)
        return row_to_dict(db.execute(query).first())

    @staticmethod
    def create_item(db: Session, tables: TenantTables, **values) -> int:
        now = datetime.utcnow()
        result = db.execute(insert(tables.inventory_items).values(created_at=now, updated_at=now, **values))
        db.commit()
        return result.inserted_primary_key[0]

    @staticmethod
    def update_item(db: Session, tables: TenantTables, item_id: int, **values) -> bool:
        values["updated_at"] = datetime.utcnow()
        items = tables.inventory_items
        result = db.execute(update(items).where(items.c.id == item_id).values(**values))
        db.commit()
        return result.rowcount > 0

    @staticmethod
    def delete_item(db: Session, tables: TenantTables, item_id: int) -> bool:
        items = tables.inventory_items
        result = db.execute(delete(items).where(items.c.id == item_id))
        db.commit()
        return result.rowcount > 0
