#!/usr/bin/env python3
"""
Tests for payload validation (spiel.dto) and paging (spiel.services.pageable).

Run with:
    python -m pytest tests/test_dto_pageable.py
"""
import os
import sys
import unittest
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError

from database import SpielArt
from spiel.dto import SpielDTO, SpielDtoOhneRef, validation_messages
from spiel.services.pageable import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Pageable,
    Slice,
    create_page,
    create_pageable,
)

VALID = {
    'barcode': '978-0-007-00644-1',
    'rating': 1,
    'art': 'COMPUTERSPIEL',
    'preis': 99.99,
    'rabatt': 0.123,
    'lieferbar': True,
    'datum': '2022-02-28',
    'homepage': 'https://test.de/',
    'schlagwoerter': ['JAVASCRIPT', 'TYPESCRIPT'],
    'name': {'name': 'Namepost', 'untertitel': 'untertitelpos'},
    'bilder': [{'beschriftung': 'Abb. 1', 'contentType': 'img/png'}],
}


def _messages(payload, model=SpielDTO):
    try:
        model.model_validate(payload)
    except ValidationError as exc:
        return validation_messages(exc)
    return []


# ===========================================================================
# DTO validation
# ===========================================================================

class TestSpielDTO(unittest.TestCase):

    def test_valid_payload(self):
        dto = SpielDTO.model_validate(VALID)
        self.assertEqual(dto.art, SpielArt.COMPUTERSPIEL)
        self.assertEqual(dto.preis, Decimal('99.99'))
        self.assertEqual(dto.bilder[0].content_type, 'img/png')

    def test_barcode_without_hyphens(self):
        dto = SpielDTO.model_validate(dict(VALID, barcode='9780007006441'))
        self.assertEqual(dto.barcode, '9780007006441')

    def test_all_invalid_fields_reported(self):
        payload = dict(
            VALID,
            barcode='falsche-BARCODE',
            rating=-1,
            art='UNSICHTBAR',
            rabatt=2,
            datum='12345-123-123',
            homepage='anyHomepage',
            name={'name': '?!'},
        )
        messages = _messages(payload)
        for prefix in ('barcode ', 'rating ', 'art ', 'rabatt ', 'datum ', 'homepage ', 'name.name '):
            self.assertTrue(any(m.startswith(prefix) for m in messages),
                            f"no message for {prefix!r} in {messages}")

    def test_rating_upper_bound(self):
        self.assertTrue(_messages(dict(VALID, rating=6))[0].startswith('rating '))

    def test_name_required(self):
        payload = dict(VALID)
        del payload['name']
        self.assertEqual(_messages(payload)[0].split()[0], 'name')

    def test_name_too_long(self):
        messages = _messages(dict(VALID, name={'name': 'x' * 41}))
        self.assertTrue(messages[0].startswith('name.name '))

    def test_bild_path_contains_index(self):
        messages = _messages(dict(VALID, bilder=[{'beschriftung': '!', 'contentType': 'img/png'}]))
        self.assertTrue(messages[0].startswith('bilder.0.beschriftung '))

    def test_duplicate_schlagwoerter(self):
        messages = _messages(dict(VALID, schlagwoerter=['JAVA', 'JAVA']))
        self.assertTrue(messages[0].startswith('schlagwoerter '))

    def test_optional_defaults(self):
        payload = {'barcode': '9780007006441', 'rating': 0, 'preis': 1, 'name': {'name': 'X'}}
        dto = SpielDTO.model_validate(payload)
        self.assertEqual(dto.rabatt, Decimal('0'))
        self.assertFalse(dto.lieferbar)
        self.assertIsNone(dto.art)

    def test_to_spiel_builds_graph(self):
        spiel = SpielDTO.model_validate(VALID).to_spiel()
        self.assertEqual(spiel.name.name, 'Namepost')
        self.assertEqual(spiel.bilder[0].beschriftung, 'Abb. 1')
        self.assertEqual(spiel.homepage, 'https://test.de/')

    def test_update_payload_ignores_name(self):
        dto = SpielDtoOhneRef.model_validate(VALID)
        self.assertNotIn('name', dto.scalar_fields())
        self.assertEqual(dto.scalar_fields()['rating'], 1)
        self.assertEqual(dto.scalar_fields()['homepage'], 'https://test.de/')

    def test_scalar_fields_only_sent_values(self):
        dto = SpielDtoOhneRef.model_validate({'barcode': '9780007006441', 'rating': 2, 'preis': 5})
        self.assertEqual(set(dto.scalar_fields()), {'barcode', 'rating', 'preis'})

    def test_scalar_fields_keep_explicit_null(self):
        dto = SpielDtoOhneRef.model_validate(
            {'barcode': '9780007006441', 'rating': 2, 'preis': 5, 'homepage': None})
        self.assertIsNone(dto.scalar_fields()['homepage'])

    def test_columns_include_defaults(self):
        dto = SpielDtoOhneRef.model_validate({'barcode': '9780007006441', 'rating': 2, 'preis': 5})
        columns = dto.columns()
        self.assertEqual(columns['rabatt'], Decimal('0'))
        self.assertIs(columns['lieferbar'], False)
        self.assertIsNone(columns['art'])


# ===========================================================================
# Paging
# ===========================================================================

class TestCreatePageable(unittest.TestCase):

    def test_defaults(self):
        self.assertEqual(create_pageable(), Pageable(number=0, size=DEFAULT_PAGE_SIZE))

    def test_page_number_is_one_based(self):
        self.assertEqual(create_pageable('3', '10'), Pageable(number=2, size=10))

    def test_invalid_values_fall_back(self):
        self.assertEqual(create_pageable('x', 'y'), Pageable(number=0, size=DEFAULT_PAGE_SIZE))
        self.assertEqual(create_pageable(0, MAX_PAGE_SIZE + 1).size, DEFAULT_PAGE_SIZE)
        self.assertEqual(create_pageable(-1, -1), Pageable(number=0, size=DEFAULT_PAGE_SIZE))

    def test_size_zero_allowed(self):
        self.assertEqual(create_pageable(1, 0).size, 0)


class TestCreatePage(unittest.TestCase):

    def test_page_structure(self):
        page = create_page(Slice(content=[1, 2], total_elements=7), Pageable(number=1, size=2))
        self.assertEqual(page['content'], [1, 2])
        self.assertEqual(page['page'], {'size': 2, 'number': 1, 'totalElements': 7, 'totalPages': 4})

    def test_serializer_applied(self):
        page = create_page(Slice(content=[1, 2], total_elements=2), Pageable(), str)
        self.assertEqual(page['content'], ['1', '2'])

    def test_unbounded_page(self):
        page = create_page(Slice(content=[1, 2, 3], total_elements=3), Pageable(size=0))
        self.assertEqual(page['page']['totalPages'], 1)
        self.assertEqual(page['page']['size'], 3)


if __name__ == '__main__':
    unittest.main()
