import numpy as np
import pytest

from skvna.calibration.forward import measure, ue14_to_e12
from skvna.calibration.layout import Topology
from skvna.calibration.standard import Standard

# topologies and measurement shapes exercised by the synthetic tests
SIZES = [1, 2, 3]
T_TOPOLOGIES = [Topology.T8, Topology.TE10, Topology.T16]
U_TOPOLOGIES = [Topology.U8, Topology.UE10, Topology.U16, Topology.UE14,
                Topology.E12]


def all_shapes(topologies=None):
    """
    (topology, m_rows, m_columns) of every valid combination.
    """
    if topologies is None:
        topologies = T_TOPOLOGIES + U_TOPOLOGIES
    shapes = []
    for topology in topologies:
        for m_rows in SIZES:
            for m_columns in SIZES:
                if topology.is_t and m_rows > m_columns:
                    continue
                if topology.is_u and m_rows < m_columns:
                    continue
                shapes.append((topology, m_rows, m_columns))
    return shapes


class Synthesizer:
    """
    Generates error terms and measurements of standards from them.
    """
    def __init__(self, rng):
        self.rng = rng

    def complex(self, size=None, scale=1.0):
        """
        Complex Gaussian values of standard deviation `scale`.
        """
        return scale * (self.rng.normal(size=size) +
                        1j * self.rng.normal(size=size)) / np.sqrt(2.0)

    def error_terms(self, layout, scale=0.1):
        """
        Error terms of a VNA close to perfect.
        """
        solve_layout = layout.solve_layout
        e = np.zeros(solve_layout.error_terms, dtype=complex)
        for g in solve_layout.groups:
            if g.name in ('ts', 'tm', 'um', 'us'):
                perfect = (g.rows == g.cols) if g.column is None else 1.0
            else:
                perfect = 0.0
            e[g.slice] = perfect + self.complex(g.size, scale)
        e[solve_layout.unity_vector()] = 1.0
        if layout.topology == Topology.E12:
            e = ue14_to_e12(solve_layout, e)
        return e

    def error_term_array(self, layout, frequencies, scale=0.1):
        return np.array([self.error_terms(layout, scale)
                         for _ in range(frequencies)])

    def measure(self, session, e, s, port_map=None, diagonal=False,
                noise=0.0):
        """
        Full measured matrices of a standard at every frequency of a
        session, with complex Gaussian noise of standard deviation
        `noise` added.
        """
        mapped = Standard(s, port_map=port_map, diagonal=diagonal) \
            .map(session.layout)
        table = session.parameters
        result = []
        for findex, f in enumerate(session.frequency):
            s_full = mapped.s_matrix(table, f,
                                     filler=lambda: self.complex(scale=0.5))
            m = measure(session.layout, e[findex], s_full)
            if noise:
                m = m + self.complex(m.shape, noise)
            result.append(m)
        return np.array(result)

    def random_standard(self, table, ports):
        """
        Fully known standard of random, frequency independent
        parameters.
        """
        return [[table.make_scalar(complex(self.complex(scale=0.5)))
                 for _ in range(ports)] for _ in range(ports)]


def _shape_ids(shapes):
    return [f'{t.value}-{r}x{c}' for t, r, c in shapes]


def pytest_generate_tests(metafunc):
    # `shape` covers every topology, `solt_shape` the ones a SOLT style
    # set of standards determines
    if 'shape' in metafunc.fixturenames:
        shapes = all_shapes()
        metafunc.parametrize('shape', shapes, ids=_shape_ids(shapes))
    if 'solt_shape' in metafunc.fixturenames:
        shapes = all_shapes([Topology.T8, Topology.TE10, Topology.U8,
                             Topology.UE10, Topology.UE14, Topology.E12])
        metafunc.parametrize('solt_shape', shapes, ids=_shape_ids(shapes))


@pytest.fixture()
def rng():
    return np.random.default_rng(20240613)


@pytest.fixture()
def synth(rng):
    return Synthesizer(rng)
