from ordinance_portal.extensions import db
from ordinance_portal.models import Ordinance
from ordinance_portal.services.ordinance_catalog_service import (
    OrdinanceCatalog,
    OrdinanceCatalogService,
)
from ordinance_portal.services.record_store import OrdinanceRecord


class CountingStore:
    def __init__(self, store):
        self._store = store
        self.fetches = 0

    def fetch_all(self):
        self.fetches += 1
        return self._store.fetch_all()


def test_catalog_is_cached_between_requests(app):
    store = CountingStore(app.extensions['record_store'])
    with app.app_context():
        first = OrdinanceCatalogService.get_catalog(store)
        second = OrdinanceCatalogService.get_catalog(store)

    assert store.fetches == 1
    assert first.records == second.records
    assert second.exemplar_ids == frozenset({1, 3})


def test_cache_disabled_fetches_every_time(app):
    app.config['ORDINANCE_CATALOG_CACHE_ENABLED'] = False
    store = CountingStore(app.extensions['record_store'])
    with app.app_context():
        OrdinanceCatalogService.get_catalog(store)
        OrdinanceCatalogService.get_catalog(store)
    assert store.fetches == 2


def test_ordinance_insert_invalidates_catalog(app):
    with app.app_context():
        assert len(OrdinanceCatalogService.get_catalog().records) == 4
        db.session.add(Ordinance(id=5, municipality_name='福岡市', title='Fukuoka ordinance', department='調査'))
        db.session.commit()

        catalog = OrdinanceCatalogService.get_catalog()

    assert [r.id for r in catalog.records] == [1, 2, 3, 4, 5]
    assert 5 in catalog.exemplar_ids


def test_filter_keeps_exemplars_from_unfiltered_catalog():
    catalog = OrdinanceCatalog.build([
        OrdinanceRecord(id=1, municipality_name='A', department='調査', title='Park rules', category='x'),
        OrdinanceRecord(id=2, municipality_name='A', department='協議', title='Sign rules', category='y'),
        OrdinanceRecord(id=3, municipality_name='B', department='協議', title='Park fees', category='x'),
    ])

    assert [r.id for r in catalog.filter(department='協議')] == [2, 3]
    assert [r.id for r in catalog.filter(category='x')] == [1, 3]
    assert [r.id for r in catalog.filter(search='PARK')] == [1, 3]
    assert [r.id for r in catalog.filter(department='all', category='all')] == [1, 2, 3]
    assert catalog.exemplar_ids == frozenset({1, 3})
    assert catalog.departments() == ['調査', '協議']
    assert catalog.categories() == ['x', 'y']


def test_invalidate_outside_app_context_is_ignored():
    assert OrdinanceCatalogService.invalidate() is False
