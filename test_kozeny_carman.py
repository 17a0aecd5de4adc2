import numpy as np

from boundary import select_boundary_pores
from errors import NumericalError
from generate_network import generate_cubic_network
from kozeny_carman import KOZENY_CONSTANT, estimate_permeability, total_surface_area
from network import PoreNetworkModel


def test_formula_with_network_porosity():
    print("\n--- Testing Kozeny-Carman with the network porosity ---")
    net = generate_cubic_network((4, 4, 4), spacing=20.0, pore_radius=5.0, throat_radius=2.0)
    net = PoreNetworkModel(net.pores, net.throats, porosity=0.25, tortuosity=1.0)
    bc = select_boundary_pores(net, 'x')

    k, details = estimate_permeability(net, bc.model_length, bc.model_area)

    phi = 0.25
    S = total_surface_area(net) / ((1 - phi) * bc.model_length * bc.model_area)
    expected = phi**3 / (KOZENY_CONSTANT * S**2 * (1 - phi)**2)
    print(f"k={k:.6e} m^2, expected {expected:.6e}")
    assert details['porosity_source'] == "network"
    assert np.isclose(k, expected, rtol=1e-12)


def test_geometric_porosity_fallback():
    net = generate_cubic_network((3, 3, 3), spacing=20.0, pore_radius=5.0, throat_radius=2.0)
    net = PoreNetworkModel(net.pores, net.throats, porosity=0.0)
    bc = select_boundary_pores(net, 'y')
    k, details = estimate_permeability(net, bc.model_length, bc.model_area, verbose=False)

    print(f"Geometric porosity {details['porosity']:.4f}")
    assert details['porosity_source'] == "geometry"
    assert 0.001 <= details['porosity'] <= 0.999
    assert k > 0


def test_zero_bulk_raises():
    net = generate_cubic_network((2, 2, 2), spacing=20.0, pore_radius=5.0, throat_radius=2.0)
    try:
        estimate_permeability(net, 0.0, 1e-10)
        assert False, "expected NumericalError"
    except NumericalError as e:
        assert e.method == "kozeny_carman"


def test_constant_scales_inverse():
    net = generate_cubic_network((3, 3, 3), spacing=20.0, pore_radius=5.0, throat_radius=2.0)
    bc = select_boundary_pores(net, 'z')
    k5, _ = estimate_permeability(net, bc.model_length, bc.model_area, verbose=False)
    k10, _ = estimate_permeability(net, bc.model_length, bc.model_area, kozeny_constant=10.0, verbose=False)
    assert np.isclose(k5, 2 * k10)


if __name__ == "__main__":
    test_formula_with_network_porosity()
    test_geometric_porosity_fallback()
    test_zero_bulk_raises()
    test_constant_scales_inverse()
