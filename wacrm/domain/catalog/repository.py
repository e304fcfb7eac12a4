"""Service catalog repository - Database operations on an agent's services and packages"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session

from ...models_tenant import TenantTables, generate_uuid, row_to_dict


class CatalogRepository:
    """Repository for service and package database operations"""

    @staticmethod
    def find_service_by_name(db: Session, tables: TenantTables, agent_id: int, name: str) -> Optional[dict]:
        services = tables.services
        row = db.execute(
            select(services).where(services.c.agent_id == agent_id, services.c.service_name == name)
        ).first()
        return row_to_dict(row)

    @staticmethod
    def get_service(db: Session, tables: TenantTables, agent_id: int, service_id: str) -> Optional[dict]:
        services = tables.services
        service = row_to_dict(
            db.execute(select(services).where(services.c.id == service_id, services.c.agent_id == agent_id)).first()
        )
        if service is None:
            return None
        service["packages"] = CatalogRepository.get_packages(db, tables, [service_id])[service_id]
        return service

    @staticmethod
    def get_packages(db: Session, tables: TenantTables, service_ids: list[str]) -> dict[str, list[dict]]:
        """Packages grouped by service id, cheapest first"""
        grouped: dict[str, list[dict]] = {service_id: [] for service_id in service_ids}
        if not service_ids:
            return grouped
        packages = tables.service_packages
        rows = db.execute(
            select(packages)
            .where(packages.c.service_id.in_(service_ids))
            .order_by(packages.c.price.asc(), packages.c.created_at.asc())
        )
        for row in rows:
            package = row_to_dict(row)
            grouped.setdefault(package["service_id"], []).append(package)
        return grouped

    @staticmethod
    def get_package(db: Session, tables: TenantTables, agent_id: int, package_id: str) -> Optional[dict]:
        packages = tables.service_packages
        services = tables.services
        row = db.execute(
            select(packages)
            .select_from(packages.join(services, packages.c.service_id == services.c.id))
            .where(packages.c.id == package_id, services.c.agent_id == agent_id)
        ).first()
        return row_to_dict(row)

    @staticmethod
    def list_services(db: Session, tables: TenantTables, agent_id: int, service_name: Optional[str] = None) -> list[dict]:
        services = tables.services
        query = select(services).where(services.c.agent_id == agent_id)
        if service_name:
            query = query.where(services.c.service_name.ilike(f"%{service_name}%"))
        services_found = [row_to_dict(row) for row in db.execute(query)]
        packages = CatalogRepository.get_packages(db, tables, [s["id"] for s in services_found])
        for service in services_found:
            service["packages"] = packages.get(service["id"], [])
        return services_found

    @staticmethod
    def create_service(db: Session, tables: TenantTables, service_values: dict, packages: list[dict]) -> str:
        """Insert the service and its packages in one transaction. Returns the service id."""
        now = datetime.utcnow()
        service_id = generate_uuid()
        try:
            db.execute(
                insert(tables.services).values(id=service_id, created_at=now, updated_at=now, **service_values)
            )
            for package in packages:
                db.execute(
                    insert(tables.service_packages).values(
                        id=generate_uuid(), service_id=service_id, created_at=now, updated_at=now, **package
                    )
                )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return service_id

    @staticmethod
    def update_service(db: Session, tables: TenantTables, service_id: str, **values):
        values["updated_at"] = datetime.utcnow()
        db.execute(update(tables.services).where(tables.services.c.id == service_id).values(**values))
        db.commit()

    @staticmethod
    def update_package(db: Session, tables: TenantTables, package_id: str, **values):
        values["updated_at"] = datetime.utcnow()
        packages = tables.service_packages
        db.execute(update(packages).where(packages.c.id == package_id).values(**values))
        db.commit()

    @staticmethod
    def count_order_references(db: Session, tables: TenantTables, service_id: str) -> int:
        """Order lines that reference one of the service's active packages"""
        packages = tables.service_packages
        items = tables.order_items
        active_packages = select(packages.c.id).where(
            packages.c.service_id == service_id, packages.c.is_active.is_(True)
        )
        return db.execute(
            select(func.count()).select_from(items).where(items.c.package_id.in_(active_packages))
        ).scalar_one()

    @staticmethod
    def delete_service(db: Session, tables: TenantTables, service_id: str) -> int:
        """Delete the service and its packages. Returns the number of packages removed."""
        try:
            result = db.execute(
                delete(tables.service_packages).where(tables.service_packages.c.service_id == service_id)
            )
            db.execute(delete(tables.services).where(tables.services.c.id == service_id))
            db.commit()
        except Exception:
            db.rollback()
            raise
        return result.rowcount
