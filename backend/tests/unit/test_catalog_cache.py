"""Unit tests for the supplier catalog cache"""

from matching.catalog_cache import SupplierCatalogCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSupplierCatalogCache:
    """Test project-scoped, time-invalidated snapshots"""

    def test_snapshot_contains_suppliers_and_interchange(self, db_session, catalog, project):
        """Test only SUPPLIER items and the project's interchange rows are loaded"""
        catalog.source(project, "A-1")
        supplier = catalog.supplier(project, "S-1")
        row = catalog.interchange(project, "A1", "S1")
        cache = SupplierCatalogCache()

        snapshot = cache.get(db_session, project.id)

        assert [s.id for s in snapshot.suppliers] == [supplier.id]
        assert [r.id for r in snapshot.interchange] == [row.id]
        assert snapshot.supplier_by_id()[supplier.id].part_number == "S-1"

    def test_hit_within_ttl(self, db_session, catalog, project):
        """Test a second read inside the TTL is served from memory"""
        catalog.supplier(project, "S-1")
        clock = FakeClock()
        cache = SupplierCatalogCache(ttl_seconds=60, clock=clock)

        first = cache.get(db_session, project.id)
        catalog.supplier(project, "S-2")
        clock.now += 59
        second = cache.get(db_session, project.id)

        assert second is first
        assert len(second.suppliers) == 1
        assert (cache.hits, cache.misses) == (1, 1)

    def test_reload_after_ttl(self, db_session, catalog, project):
        """Test an expired snapshot is reloaded"""
        catalog.supplier(project, "S-1")
        clock = FakeClock()
        cache = SupplierCatalogCache(ttl_seconds=60, clock=clock)

        cache.get(db_session, project.id)
        catalog.supplier(project, "S-2")
        clock.now += 60

        assert len(cache.get(db_session, project.id).suppliers) == 2
        assert cache.misses == 2

    def test_projects_are_isolated(self, db_session, catalog, project):
        """Test snapshots are keyed by project"""
        other = catalog.project(name="Other")
        catalog.supplier(project, "S-1")
        catalog.supplier(other, "S-2")
        catalog.supplier(other, "S-3")
        cache = SupplierCatalogCache()

        assert len(cache.get(db_session, project.id).suppliers) == 1
        assert len(cache.get(db_session, other.id).suppliers) == 2

    def test_invalidate(self, db_session, catalog, project):
        """Test invalidation forces a reload for one project"""
        catalog.supplier(project, "S-1")
        cache = SupplierCatalogCache()
        cache.get(db_session, project.id)
        catalog.supplier(project, "S-2")

        cache.invalidate(project.id)

        assert len(cache.get(db_session, project.id).suppliers) == 2

    def test_derived_structures_built_once(self, db_session, catalog, project):
        """Test derived indexes are cached on the snapshot"""
        catalog.supplier(project, "S-1")
        snapshot = SupplierCatalogCache().get(db_session, project.id)
        builds = []

        def build(snap):
            builds.append(snap)
            return object()

        assert snapshot.derived("index", build) is snapshot.derived("index", build)
        assert len(builds) == 1

    def test_stats(self, db_session, catalog, project):
        """Test statistics exposed on the health endpoint"""
        catalog.supplier(project, "S-1")
        clock = FakeClock()
        cache = SupplierCatalogCache(ttl_seconds=60, clock=clock)
        cache.get(db_session, project.id)
        clock.now += 5

        stats = cache.stats()

        assert stats["projects"] == 1
        assert stats["misses"] == 1
        assert stats["ttl_seconds"] == 60
        assert stats["entries"][str(project.id)] == {"suppliers": 1, "interchange": 0, "age_seconds": 5.0}

    def test_clear(self, db_session, catalog, project):
        """Test clear drops snapshots and counters"""
        catalog.supplier(project, "S-1")
        cache = SupplierCatalogCache()
        cache.get(db_session, project.id)

        cache.clear()

        assert cache.stats()["projects"] == 0
        assert cache.misses == 0
