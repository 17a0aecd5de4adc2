import threading

import numpy as np

from errors import BoundaryConditionError, SimulationCancelled
from generate_network import generate_cubic_network, two_pore_network
from network import PoreNetworkModel
from simulation import FLOW_METHODS, METHODS, simulate


def _network():
    return generate_cubic_network((4, 3, 3), spacing=20.0, pore_radius=5.0, throat_radius=2.0,
                                  jitter=0.1, radius_spread=0.2, seed=5)


def test_all_methods_and_correction():
    print("\n--- Testing simulate with all methods ---")
    net = _network()
    tau = 1.5
    result = simulate(net, 'x', 1e-3, 2000.0, 1000.0, use_darcy=True, use_lattice=True, use_inertial=True,
                      tortuosity=tau, segments=3)

    assert result.used_darcy and result.used_lattice_boltzmann and result.used_navier_stokes
    assert result.tortuosity == tau
    for method in METHODS:
        raw = result.permeability(method)
        assert raw > 0, method
        assert result.permeability(method, corrected=True) == raw / (tau * tau)
        assert getattr(result, f'corrected_{method}_permeability_md') == 1000.0 * result.permeability(method, True)
        assert getattr(result, f'{method}_permeability_md') == 1000.0 * raw

    assert np.isclose(result.lattice_boltzmann_permeability, result.darcy_permeability, rtol=1e-6)
    assert result.navier_stokes_permeability <= result.darcy_permeability * (1 + 1e-9)

    # Shared fields come from Darcy
    assert len(result.pressure_field) == net.n_pores
    assert len(result.throat_flow_rates) == net.n_throats
    assert len(result.lattice_boltzmann_pressure_field) == net.n_pores
    assert result.total_flow_rate > 0
    assert result.inlet_pores and result.outlet_pores

    text = result.summary()
    print(text)
    assert "Darcy" in text and "Lattice-Boltzmann" in text and "Kozeny-Carman" in text


def test_network_tortuosity_is_default():
    pores, throats = _network().pores, _network().throats
    net = PoreNetworkModel(pores, throats, porosity=0.3, tortuosity=2.0)
    result = simulate(net, 'y', 1e-3, 100.0, 0.0, verbose=False)
    assert result.tortuosity == 2.0
    assert result.corrected_darcy_permeability == result.darcy_permeability / 4.0
    assert not result.used_lattice_boltzmann and not result.used_navier_stokes
    assert result.lattice_boltzmann_permeability == 0.0
    assert result.lattice_boltzmann_pressure_field == {}


def test_result_is_frozen():
    result = simulate(two_pore_network(), 'x', 1e-3, 1000.0, 0.0, verbose=False)
    try:
        result.darcy_permeability = 1.0
        assert False, "expected AttributeError"
    except AttributeError:
        pass

    for field in (result.pressure_field, result.throat_flow_rates, result.navier_stokes_pressure_field):
        try:
            field[1] = 0.0
            assert False, "expected TypeError"
        except TypeError:
            pass
    assert isinstance(result.inlet_pores, tuple) and isinstance(result.outlet_pores, tuple)
    assert result.pressure_field[1] == 1000.0


def test_failed_method_is_skipped():
    print("\n--- Testing per-method failure recovery ---")
    net = _network()
    result = simulate(net, 'x', 1e-3, 2000.0, 1000.0, use_lattice=True, use_inertial=True,
                      max_iterations=1, verbose=False)
    assert result.used_darcy
    assert not result.used_lattice_boltzmann
    assert not result.used_navier_stokes
    assert result.lattice_boltzmann_permeability == 0.0
    assert result.navier_stokes_pressure_field == {}


def test_disconnected_network_keeps_reference():
    pores = [
        (1, 0.0, 0.0, 0.0, 1.0, 4.19, 12.57),
        (2, 10.0, 0.0, 0.0, 1.0, 4.19, 12.57),
        (3, 90.0, 0.0, 0.0, 1.0, 4.19, 12.57),
        (4, 100.0, 0.0, 0.0, 1.0, 4.19, 12.57),
    ]
    throats = [(1, 1, 2, 1.0, 8.0, 1.0), (2, 3, 4, 1.0, 8.0, 1.0)]
    net = PoreNetworkModel.from_records(pores, throats)
    result = simulate(net, 'x', 1e-3, 100.0, 0.0, verbose=False)

    assert not any(result.used(m) for m in FLOW_METHODS)
    assert result.pressure_field == {} and result.total_flow_rate == 0.0
    assert result.kozeny_carman_permeability > 0


def test_progress_reports():
    seen = []
    simulate(_network(), 'z', 1e-3, 10.0, 0.0, use_lattice=True, progress=seen.append, verbose=False)
    print(f"Progress: {seen}")
    assert seen[0] == 5 and seen[1] == 15 and seen[-1] == 100
    assert 95 in seen
    assert all(b >= a for a, b in zip(seen, seen[1:]))


def test_cancellation():
    token = threading.Event()

    def progress(percent):
        if percent >= 15:
            token.set()

    try:
        simulate(_network(), 'x', 1e-3, 10.0, 0.0, use_lattice=True, progress=progress,
                 cancel_token=token, verbose=False)
        assert False, "expected SimulationCancelled"
    except SimulationCancelled:
        print("Cancelled as expected.")


def test_invalid_parameters():
    net = two_pore_network()
    cases = [
        dict(viscosity=0.0),
        dict(input_pressure=5.0, output_pressure=5.0),
        dict(tortuosity=0.5),
        dict(use_darcy=False),
    ]
    for case in cases:
        kwargs = dict(viscosity=1e-3, input_pressure=1.0, output_pressure=0.0, verbose=False)
        kwargs.update(case)
        try:
            simulate(net, 'x', **kwargs)
            assert False, f"expected ValueError for {case}"
        except ValueError:
            pass


def test_boundary_error_is_fatal():
    net = generate_cubic_network((3, 3, 1), spacing=10.0, pore_radius=2.0, throat_radius=1.0)
    try:
        simulate(net, 'z', 1e-3, 1.0, 0.0, verbose=False)
        assert False, "expected BoundaryConditionError"
    except BoundaryConditionError:
        pass


if __name__ == "__main__":
    test_all_methods_and_correction()
    test_network_tortuosity_is_default()
    test_result_is_frozen()
    test_failed_method_is_skipped()
    test_disconnected_network_keeps_reference()
    test_progress_reports()
    test_cancellation()
    test_invalid_parameters()
    test_boundary_error_is_fatal()
