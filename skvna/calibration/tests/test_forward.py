import numpy as np
import pytest

from skvna.calibration import (DomainError, Topology, UsageError, get_layout,
                               measure, to_e_terms, ue14_to_e12)


def e_term_measure(terms, s):
    """
    M = El + Er S (I - Em S)^-1 Et for full E-term blocks.
    """
    n = s.shape[0]
    return terms['el'] + terms['er'] @ s @ np.linalg.solve(
        np.eye(n) - terms['em'] @ s, terms['et'])


def e_term_measure_columns(terms, s):
    """
    The same with one diagonal error model per measurement column.
    """
    m_rows, m_columns = terms['el'].shape
    m = np.empty((m_rows, m_columns), dtype=complex)
    for j in range(m_columns):
        t = np.linalg.solve(np.eye(m_rows) - np.diag(terms['em'][:, j]) @ s,
                            np.eye(m_rows)[:, j])
        m[:, j] = terms['el'][:, j] + terms['er'][:, j] * (s @ t)
    return m


def test_perfect_vna_measures_s(shape, synth):
    topology, m_rows, m_columns = shape
    layout = get_layout(topology, m_rows, m_columns)
    e = np.zeros(layout.error_terms, dtype=complex)
    if topology == Topology.E12:
        for j in range(m_columns):
            e[layout.group('er', j).slice] = 1.0
    else:
        for g in layout.groups:
            if g.name in ('ts', 'tm', 'um', 'us'):
                e[g.slice] = (g.rows == g.cols) if g.column is None else 1.0
    s = synth.complex((layout.ports, layout.ports), 0.5)
    np.testing.assert_allclose(measure(layout, e, s),
                               s[:m_rows, :m_columns], atol=1e-12)


def test_e_terms_agree_with_measure(shape, synth):
    topology, m_rows, m_columns = shape
    layout = get_layout(topology, m_rows, m_columns)
    e = synth.error_terms(layout)
    s = synth.complex((layout.ports, layout.ports), 0.5)
    terms = to_e_terms(layout, e)
    if topology.per_column:
        predicted = e_term_measure_columns(terms, s)
    else:
        predicted = e_term_measure(terms, s)
    np.testing.assert_allclose(predicted, measure(layout, e, s), atol=1e-10)


@pytest.mark.parametrize('m_rows,m_columns', [(1, 1), (2, 1), (2, 2), (3, 2)])
def test_ue14_to_e12(m_rows, m_columns, synth):
    ue14 = get_layout('UE14', m_rows, m_columns)
    e12 = get_layout('E12', m_rows, m_columns)
    e = synth.error_terms(ue14)
    converted = ue14_to_e12(ue14, e)
    assert converted.shape == (e12.error_terms,)
    for _ in range(3):
        s = synth.complex((m_rows, m_rows), 0.5)
        np.testing.assert_allclose(measure(e12, converted, s),
                                   measure(ue14, e, s), atol=1e-10)
    with pytest.raises(UsageError):
        ue14_to_e12(e12, converted)


def test_leakage_added_off_diagonal(synth):
    layout = get_layout('TE10', 2, 2)
    e = synth.error_terms(layout)
    m = measure(layout, e, np.zeros((2, 2)))
    np.testing.assert_allclose([m[0, 1], m[1, 0]],
                               e[layout.group('el').slice])


def test_singular_relation():
    layout = get_layout('T8', 1, 1)
    # tx s + tm = 0
    e = np.array([1.0, 0.0, 1.0, 1.0])
    with pytest.raises(DomainError):
        measure(layout, e, [[-1.0]])


def test_invalid_arguments():
    layout = get_layout('U8', 2, 2)
    with pytest.raises(UsageError):
        measure(layout, np.ones(7), np.zeros((2, 2)))
    with pytest.raises(UsageError):
        measure(layout, np.ones(8), np.zeros((2, 3)))
    with pytest.raises(DomainError):
        measure(layout, np.ones(8), np.full((2, 2), np.nan))
