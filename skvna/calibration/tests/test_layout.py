import unittest

import numpy as np
import pytest

from skvna.calibration import ErrorTermLayout, Topology, UsageError, get_layout


def expected_terms(topology, m_rows, m_columns):
    ports = max(m_rows, m_columns)
    diagonals = min(m_rows, m_columns)
    leakage = m_rows * m_columns - diagonals
    if topology in (Topology.T8, Topology.U8):
        return 2 * (m_rows + m_columns)
    if topology in (Topology.TE10, Topology.UE10):
        return 2 * (m_rows + m_columns) + leakage
    if topology in (Topology.T16, Topology.U16):
        return 2 * ports * (m_rows + m_columns)
    if topology == Topology.UE14:
        return m_columns * (2 * m_rows + 2) + leakage
    return 3 * m_rows * m_columns


def test_term_counts(shape):
    topology, m_rows, m_columns = shape
    layout = get_layout(topology, m_rows, m_columns)
    assert layout.error_terms == expected_terms(topology, m_rows, m_columns)
    assert sum(g.size for g in layout.groups) == layout.error_terms
    assert len(layout.term_names) == layout.error_terms
    # groups tile the error term vector
    covered = np.zeros(layout.error_terms, dtype=int)
    for g in layout.groups:
        covered[g.slice] += 1
    assert np.all(covered == 1)


def test_one_unity_term_per_system(shape):
    topology, m_rows, m_columns = shape
    layout = get_layout(topology, m_rows, m_columns)
    unity = layout.unity_vector()
    if topology == Topology.E12:
        assert not unity.any()
        assert layout.solve_layout.topology == Topology.UE14
    else:
        assert unity.sum() == layout.systems
        assert layout.x_length == \
            layout.el_offset - layout.systems
        for system in range(layout.systems):
            index = layout.system_offset(system) + layout.unity_index(system)
            assert layout.term_names[index] in ('tm11', 'um11',
                                                f'c{system + 1}_um'
                                                f'{system + 1}{system + 1}')


class ErrorTermLayoutTest(unittest.TestCase):
    def test_t8_2x2(self):
        layout = ErrorTermLayout('T8', 2, 2)
        self.assertEqual([g.name for g in layout.groups],
                         ['ts', 'ti', 'tx', 'tm'])
        self.assertEqual(layout.group('tm').offset, 6)
        self.assertEqual(layout.term_names[:2], ['ts11', 'ts22'])
        self.assertEqual(layout.el_terms, 0)
        self.assertEqual(layout.x_length, 7)

    def test_te10_leakage_order(self):
        layout = ErrorTermLayout(Topology.TE10, 2, 3)
        self.assertEqual(layout.el_terms, 4)
        self.assertEqual(layout.leakage_cells, [(0, 1), (0, 2), (1, 0), (1, 2)])
        self.assertEqual(layout.term_names[layout.el_offset:],
                         ['el12', 'el13', 'el21', 'el23'])

    def test_ue14_groups(self):
        layout = ErrorTermLayout('UE14', 3, 2)
        self.assertEqual(layout.systems, 2)
        self.assertEqual(layout.system_terms, 8)
        self.assertEqual(layout.group('ui', 1).offset, 11)
        self.assertEqual(layout.unity_index(1), 1)
        self.assertIn('c2_um22', layout.term_names)

    def test_t16_shapes(self):
        layout = ErrorTermLayout('T16', 1, 2)
        self.assertEqual(layout.group('ts').shape, (1, 2))
        self.assertEqual(layout.group('tx').shape, (2, 2))
        self.assertEqual(layout.error_terms, 12)

    def test_blocks(self):
        layout = ErrorTermLayout('U8', 2, 2)
        e = np.arange(1, 9, dtype=complex)
        blocks = layout.blocks(e)
        np.testing.assert_array_equal(blocks['um'], np.diag([1, 2]))
        np.testing.assert_array_equal(blocks['us'], np.diag([7, 8]))
        np.testing.assert_array_equal(blocks['el'], np.zeros((2, 2)))
        with self.assertRaises(UsageError):
            layout.blocks(e[:-1])

    def test_per_column_blocks(self):
        layout = ErrorTermLayout('E12', 2, 2)
        e = np.arange(12, dtype=complex)
        blocks = layout.blocks(e)
        self.assertEqual(len(blocks), 2)
        np.testing.assert_array_equal(blocks[1]['em'], [10, 11])

    def test_invalid(self):
        for args in (('T8', 2, 1), ('UE14', 1, 2), ('E12', 0, 0),
                     ('T9', 1, 1), ('T8', 1.5, 2)):
            with self.assertRaises(UsageError):
                ErrorTermLayout(*args)
        with self.assertRaises(UsageError):
            ErrorTermLayout('T8', 2, 2).group('um')

    def test_cached(self):
        self.assertIs(get_layout('T8', 2, 2), get_layout('T8', 2, 2))
        self.assertEqual(get_layout('t8', 2, 2), ErrorTermLayout('T8', 2, 2))

    def test_topology_properties(self):
        self.assertTrue(Topology.TE10.is_t)
        self.assertTrue(Topology.E12.is_u)
        self.assertTrue(Topology.UE14.has_leakage)
        self.assertFalse(Topology.U16.has_leakage)
        self.assertEqual(Topology.from_value('ue10'), Topology.UE10)
        with pytest.raises(UsageError):
            Topology.from_value(8)
