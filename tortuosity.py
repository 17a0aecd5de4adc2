
import numpy as np
from scipy import sparse
from scipy.sparse.csgraph import dijkstra

from boundary import FlowAxis, select_boundary_pores
from errors import BoundaryConditionError

MAX_PATH_RATIO = 15.0 # paths longer than this times the straight extent are loops, not flow paths


def correct_permeability(k_raw, tortuosity):
    """k_corrected = k_raw / tau^2, the single correction law for every method."""
    if not np.isfinite(tortuosity) or tortuosity < 1.0:
        raise ValueError(f"Tortuosity must be finite and >= 1, got {tortuosity}")
    return k_raw / (tortuosity * tortuosity)


def _max_tortuosity(mean_connectivity):
    # Poorly connected networks can legitimately wind more
    if mean_connectivity >= 4.0:
        return 5.0
    elif mean_connectivity >= 3.0:
        return 6.5
    elif mean_connectivity >= 2.0:
        return 8.0
    return 11.0


def axis_tortuosity(network, axis, graph=None):
    """
    Geometric tortuosity along one axis: median shortest inlet->outlet path
    (centre-to-centre throat distances) divided by the straight extent.
    Returns inf when no admissible path exists.
    """
    axis = FlowAxis.parse(axis)
    try:
        bc = select_boundary_pores(network, axis)
    except BoundaryConditionError:
        return np.inf

    coord = network.axis_coordinates(axis)
    straight = coord.max() - coord.min()
    if straight < 1e-6:
        return 1.0

    if graph is None:
        graph = distance_graph(network)

    inlet = [network.pore_index(i) for i in bc.inlet]
    outlet = [network.pore_index(i) for i in bc.outlet]
    dist = dijkstra(graph, directed=False, indices=inlet)[:, outlet]

    paths = dist[np.isfinite(dist)]
    paths = paths[(paths >= straight) & (paths < straight * MAX_PATH_RATIO)]
    if len(paths) == 0:
        return np.inf

    tau = np.sort(paths)[len(paths) // 2] / straight
    max_tau = _max_tortuosity(float(np.mean(network.pores['connection_count'])))
    return float(np.clip(tau, 1.0, max_tau))


def distance_graph(network):
    i1, i2 = network.throat_endpoints()
    c = network.centers()
    d = np.linalg.norm(c[i1] - c[i2], axis=1)
    # csgraph treats explicit zeros as missing edges
    d = np.maximum(d, 1e-12)
    n = network.n_pores
    return sparse.coo_matrix((d, (i1, i2)), shape=(n, n)).tocsr()


def estimate_tortuosity(network, axis=None):
    """
    Geometric tortuosity of the network. With axis=None the finite per-axis
    values are averaged; inf when no axis has a flow path.
    """
    if network.n_pores < 2 or network.n_throats == 0:
        return 1.0

    graph = distance_graph(network)
    if axis is not None:
        return axis_tortuosity(network, axis, graph)

    taus = [axis_tortuosity(network, ax, graph) for ax in FlowAxis]
    print(f"  Tortuosity: X={taus[0]:.3f}, Y={taus[1]:.3f}, Z={taus[2]:.3f}")
    finite = [t for t in taus if np.isfinite(t)]
    if len(finite) == 0:
        return np.inf
    return float(np.mean(finite))
