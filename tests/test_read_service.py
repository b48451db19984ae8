#!/usr/bin/env python3
"""
Tests for the search layer: QueryBuilder, ReadService and paging.

All tests run against the SQLite sample data loaded by ``database.populate``:

    id  name     rating  art            preis  schlagwoerter
    1   Alpha    4       BRETTSPIEL     11.1   JAVASCRIPT
    20  Beta     2       COMPUTERSPIEL  22.2   TYPESCRIPT
    30  Gamma    3       BRETTSPIEL     33.3   JAVASCRIPT,TYPESCRIPT
    40  Delta    4       ACTIONSPIEL    44.4   (NULL)
    50  Epsilon  2       COMPUTERSPIEL  55.5   PYTHON
    60  Phi      1       BRETTSPIEL     66.6   JAVA,PYTHON

Run with:
    python -m pytest tests/test_read_service.py
"""
import os
import sys
import unittest
from datetime import date
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from database import SpielArt
from sqlalchemy.orm import sessionmaker
from spiel.exceptions import NotFoundException
from spiel.repositories.query_builder import QueryBuilder, coerce_value
from spiel.services.pageable import Pageable, create_pageable
from spiel.services.read_service import ReadService


def _make_session():
    engine = database.make_engine('sqlite://')
    database.populate(engine)
    return sessionmaker(bind=engine, autoflush=False)()


def _ids(slice_):
    return [s.id for s in slice_.content]


ALL = Pageable(number=0, size=0)


# ===========================================================================
# find_by_id
# ===========================================================================

class TestFindById(unittest.TestCase):

    def setUp(self):
        self.db = _make_session()
        self.service = ReadService()

    def tearDown(self):
        self.db.close()

    def test_existing_id(self):
        spiel = self.service.find_by_id(self.db, 1)
        self.assertEqual(spiel.barcode, '978-3-897-22583-1')
        self.assertEqual(spiel.name.name, 'Alpha')
        self.assertEqual(spiel.version, 0)
        self.assertEqual(spiel.art, SpielArt.BRETTSPIEL)
        self.assertEqual(spiel.datum, date(2022, 2, 1))
        self.assertEqual(spiel.rabatt, Decimal('0.011'))

    def test_unknown_id_raises(self):
        with self.assertRaises(NotFoundException) as ctx:
            self.service.find_by_id(self.db, 999999)
        self.assertIn('999999', ctx.exception.message)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_oversized_id_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find_by_id(self.db, 10 ** 20)

    def test_id_zero_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find_by_id(self.db, 0)

    def test_file_oversized_id(self):
        self.assertIsNone(self.service.find_file_by_spiel_id(self.db, 10 ** 20))

    def test_null_schlagwoerter_is_empty_list(self):
        spiel = self.service.find_by_id(self.db, 40)
        self.assertEqual(spiel.schlagwoerter, [])

    def test_schlagwoerter_split(self):
        spiel = self.service.find_by_id(self.db, 30)
        self.assertEqual(sorted(spiel.schlagwoerter), ['JAVASCRIPT', 'TYPESCRIPT'])

    def test_mit_bilder(self):
        spiel = self.service.find_by_id(self.db, 20, mit_bilder=True)
        self.assertEqual(len(spiel.bilder), 2)
        self.assertEqual(spiel.bilder[0].content_type, 'img/png')

    def test_to_dict_is_json_ready(self):
        data = self.service.find_by_id(self.db, 1).to_dict()
        self.assertEqual(data['preis'], 11.1)
        self.assertEqual(data['datum'], '2022-02-01')
        self.assertEqual(data['name'], {'name': 'Alpha', 'untertitel': 'alpha'})
        self.assertEqual(data['art'], 'BRETTSPIEL')

    def test_file_absent(self):
        self.assertIsNone(self.service.find_file_by_spiel_id(self.db, 1))


# ===========================================================================
# find
# ===========================================================================

class TestFind(unittest.TestCase):

    def setUp(self):
        self.db = _make_session()
        self.service = ReadService()

    def tearDown(self):
        self.db.close()

    def test_no_criteria_returns_first_page(self):
        result = self.service.find(self.db, None, create_pageable())
        self.assertEqual(_ids(result), [1, 20, 30, 40, 50])
        self.assertEqual(result.total_elements, 6)

    def test_empty_criteria_same_as_none(self):
        result = self.service.find(self.db, {}, create_pageable(2))
        self.assertEqual(_ids(result), [60])
        self.assertEqual(result.total_elements, 6)

    def test_page_beyond_end_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find(self.db, {}, create_pageable(3))

    def test_size_zero_is_unbounded(self):
        result = self.service.find(self.db, {}, create_pageable(1, 0))
        self.assertEqual(len(result.content), 6)

    def test_name_substring_case_insensitive(self):
        result = self.service.find(self.db, {'name': 'A'}, ALL)
        self.assertEqual(_ids(result), [1, 20, 30, 40])

    def test_name_not_found(self):
        with self.assertRaises(NotFoundException):
            self.service.find(self.db, {'name': 'xyz'}, ALL)

    def test_rating_is_minimum(self):
        result = self.service.find(self.db, {'rating': '4'}, ALL)
        self.assertEqual(_ids(result), [1, 40])

    def test_non_numeric_rating_ignored(self):
        result = self.service.find(self.db, {'rating': 'abc'}, ALL)
        self.assertEqual(len(result.content), 6)

    def test_oversized_rating_ignored(self):
        result = self.service.find(self.db, {'rating': '9' * 20}, ALL)
        self.assertEqual(len(result.content), 6)

    def test_oversized_integer_column_raises(self):
        for key in ('id', 'version'):
            with self.subTest(key=key):
                with self.assertRaises(NotFoundException):
                    self.service.find(self.db, {key: '9' * 20}, ALL)

    def test_preis_is_maximum(self):
        result = self.service.find(self.db, {'preis': '30'}, ALL)
        self.assertEqual(_ids(result), [1, 20])

    def test_javascript_flag(self):
        result = self.service.find(self.db, {'javascript': 'true'}, ALL)
        self.assertEqual(_ids(result), [1, 30])

    def test_typescript_flag_boolean(self):
        result = self.service.find(self.db, {'typescript': True}, ALL)
        self.assertEqual(_ids(result), [20, 30])

    def test_java_flag_ignores_javascript(self):
        result = self.service.find(self.db, {'java': 'true'}, ALL)
        self.assertEqual(_ids(result), [60])

    def test_python_flag(self):
        result = self.service.find(self.db, {'python': 'true'}, ALL)
        self.assertEqual(_ids(result), [50, 60])

    def test_flag_false_is_ignored(self):
        result = self.service.find(self.db, {'python': 'false'}, ALL)
        self.assertEqual(len(result.content), 6)

    def test_combined_criteria_are_conjunctive(self):
        result = self.service.find(self.db, {'javascript': 'true', 'typescript': 'true'}, ALL)
        self.assertEqual(_ids(result), [30])

    def test_art_equality(self):
        result = self.service.find(self.db, {'art': 'BRETTSPIEL'}, ALL)
        self.assertEqual(_ids(result), [1, 30, 60])

    def test_invalid_art_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find(self.db, {'art': 'UNSICHTBAR'}, ALL)

    def test_barcode_equality(self):
        result = self.service.find(self.db, {'barcode': '978-0-201-63361-0'}, ALL)
        self.assertEqual(_ids(result), [30])

    def test_lieferbar_string_coerced(self):
        result = self.service.find(self.db, {'lieferbar': 'true'}, ALL)
        self.assertEqual(len(result.content), 6)

    def test_datum_equality(self):
        result = self.service.find(self.db, {'datum': '2022-02-04'}, ALL)
        self.assertEqual(_ids(result), [40])

    def test_uncoercible_value_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find(self.db, {'datum': 'not-a-date'}, ALL)

    def test_unknown_key_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find(self.db, {'foo': 'bar'}, ALL)

    def test_relationship_key_raises(self):
        with self.assertRaises(NotFoundException):
            self.service.find(self.db, {'bilder': 'x'}, ALL)

    def test_total_ignores_paging(self):
        result = self.service.find(self.db, {'art': 'BRETTSPIEL'}, Pageable(number=0, size=2))
        self.assertEqual(_ids(result), [1, 30])
        self.assertEqual(result.total_elements, 3)


# ===========================================================================
# QueryBuilder details
# ===========================================================================

class TestQueryBuilder(unittest.TestCase):

    def test_build_applies_default_paging(self):
        stmt = QueryBuilder().build({}, None)
        self.assertEqual(stmt._limit_clause.value, 5)

    def test_build_size_zero_has_no_limit(self):
        stmt = QueryBuilder().build({}, Pageable(number=3, size=0))
        self.assertIsNone(stmt._limit_clause)

    def test_build_offset(self):
        stmt = QueryBuilder().build({}, Pageable(number=2, size=10))
        self.assertEqual(stmt._offset_clause.value, 20)

    def test_coerce_boolean(self):
        column = database.Spiel.__table__.columns['lieferbar']
        self.assertIs(coerce_value(column, 'false'), False)
        with self.assertRaises(ValueError):
            coerce_value(column, 'maybe')

    def test_coerce_integer_range(self):
        column = database.Spiel.__table__.columns['version']
        self.assertEqual(coerce_value(column, '3'), 3)
        with self.assertRaises(ValueError):
            coerce_value(column, str(2 ** 63))

    def test_coerce_keyword_list(self):
        column = database.Spiel.__table__.columns['schlagwoerter']
        self.assertEqual(coerce_value(column, ['JAVA', 'PYTHON']), 'JAVA,PYTHON')

    def test_coerce_enum(self):
        column = database.Spiel.__table__.columns['art']
        self.assertEqual(coerce_value(column, 'ACTIONSPIEL'), SpielArt.ACTIONSPIEL)


if __name__ == '__main__':
    unittest.main()
