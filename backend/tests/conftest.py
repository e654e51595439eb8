"""Pytest fixtures for the matching pipeline.

Provides reusable test fixtures for:
- In-memory SQLite database session (tables created per test)
- Catalog builder for projects, SOURCE/SUPPLIER items, interchange rows,
  master rules and candidates
- Recorded sleep for rate-limit delays (provider fakes live in fakes.py)
- FastAPI test client with the database and job dispatcher overridden

Usage:
    def test_exact_match(db_session, catalog, catalog_cache):
        project = catalog.project()
        catalog.source(project, "00123-A")
        catalog.supplier(project, "123A")
"""

import sys
import os
from pathlib import Path

# Set environment variables BEFORE any imports to ensure they take effect
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Callable, Generator, List, Optional
from uuid import UUID

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from matching.catalog_cache import SupplierCatalogCache
from matching.normalizer import normalize
from models.base import Base
from models.catalog_item import CatalogItem, CatalogRole
from models.interchange import InterchangeRow
from models.match_candidate import MatchCandidate, MatchMethod, MatchStatus, TargetType
from models.master_rule import MasterRule, MasterRuleType, MasterRuleScope
from models.project import Project


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database shared by every connection of one test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    """Database session with the same options as the application factory."""
    TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# CATALOG DATA
# =============================================================================

class CatalogBuilder:
    """Creates committed catalog rows with normalized part numbers."""

    def __init__(self, db: Session):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def project(self, name: str = "Test Project", budget_limit_micros: Optional[int] = None, **kwargs) -> Project:
        return self._save(Project(name=name, budget_limit_micros=budget_limit_micros, **kwargs))

    def item(
        self,
        project: Project,
        role: CatalogRole,
        part_number: str,
        line_code: Optional[str] = None,
        description: Optional[str] = None,
        cost: Optional[float] = None
    ) -> CatalogItem:
        return self._save(CatalogItem(
            project_id=project.id,
            role=role.value,
            part_number=part_number,
            part_number_norm=normalize(part_number),
            line_code=line_code,
            description=description,
            cost=cost,
        ))

    def source(self, project: Project, part_number: str, **kwargs) -> CatalogItem:
        return self.item(project, CatalogRole.SOURCE, part_number, **kwargs)

    def supplier(self, project: Project, part_number: str, **kwargs) -> CatalogItem:
        return self.item(project, CatalogRole.SUPPLIER, part_number, **kwargs)

    def interchange(
        self,
        project: Project,
        source_part_number: str,
        vendor_part_number: str,
        vendor: Optional[str] = None,
        line_code: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> InterchangeRow:
        return self._save(InterchangeRow(
            project_id=project.id,
            source_part_number=source_part_number,
            source_part_number_norm=normalize(source_part_number),
            vendor_part_number=vendor_part_number,
            vendor_part_number_norm=normalize(vendor_part_number),
            vendor=vendor,
            line_code=line_code,
            confidence=confidence,
        ))

    def rule(
        self,
        store_part_number: str,
        supplier_part_number: str,
        rule_type: MasterRuleType = MasterRuleType.POSITIVE_MAP,
        project: Optional[Project] = None,
        line_code: Optional[str] = None,
        enabled: bool = True
    ) -> MasterRule:
        scope = MasterRuleScope.PROJECT_SPECIFIC if project is not None else MasterRuleScope.GLOBAL
        return self._save(MasterRule(
            rule_type=rule_type.value,
            scope=scope.value,
            project_id=project.id if project is not None else None,
            store_part_number=store_part_number,
            store_part_number_norm=normalize(store_part_number),
            supplier_part_number=supplier_part_number,
            supplier_part_number_norm=normalize(supplier_part_number),
            line_code=line_code,
            confidence=1.0,
            enabled=enabled,
        ))

    def candidate(
        self,
        project: Project,
        source: CatalogItem,
        target: CatalogItem,
        method: MatchMethod = MatchMethod.EXACT_NORMALIZED,
        match_stage: int = 1,
        confidence: float = 0.9,
        status: MatchStatus = MatchStatus.PENDING
    ) -> MatchCandidate:
        return self._save(MatchCandidate(
            project_id=project.id,
            source_item_id=source.id,
            target_type=TargetType.SUPPLIER.value,
            target_id=target.id,
            method=method.value,
            match_stage=match_stage,
            confidence=confidence,
            status=status.value,
            features={},
        ))

    def candidates_for(self, source: CatalogItem) -> List[MatchCandidate]:
        return self.db.query(MatchCandidate).filter(
            MatchCandidate.source_item_id == source.id
        ).order_by(MatchCandidate.match_stage, MatchCandidate.id).all()


@pytest.fixture
def catalog(db_session) -> CatalogBuilder:
    return CatalogBuilder(db_session)


@pytest.fixture
def project(catalog) -> Project:
    return catalog.project()


@pytest.fixture
def catalog_cache() -> SupplierCatalogCache:
    return SupplierCatalogCache(ttl_seconds=3600)


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    delays = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


# =============================================================================
# API CLIENT
# =============================================================================

@pytest.fixture
def dispatched() -> List[UUID]:
    """Job ids handed to the work queue during a test."""
    return []


@pytest.fixture
def client(db_session, dispatched, catalog_cache) -> Generator[TestClient, None, None]:
    """Test client bound to the test session; no broker required."""
    from main import app
    from database import get_db
    from dependencies import get_job_dispatcher, get_supplier_catalog_cache

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_dispatcher] = lambda: dispatched.append
    app.dependency_overrides[get_supplier_catalog_cache] = lambda: catalog_cache

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
