import os
import tempfile

import numpy as np

from binary_io import BinaryWriter
from boundary import FlowAxis
from errors import FormatError, TruncationError, VersionError
from generate_network import generate_cubic_network, two_pore_network
from network import PoreNetworkModel
from result_io import decode_result, encode_result, load_result, save_result
from simulation import METHODS, PermeabilitySimulationResult, simulate

FIELDS = ['flow_axis', 'viscosity', 'input_pressure', 'output_pressure', 'tortuosity', 'model_length',
          'model_area', 'used_darcy', 'used_lattice_boltzmann', 'used_navier_stokes', 'pressure_field',
          'lattice_boltzmann_pressure_field', 'navier_stokes_pressure_field', 'throat_flow_rates',
          'total_flow_rate', 'inlet_pores', 'outlet_pores', 'timestamp']


def _simulated():
    net = generate_cubic_network((4, 3, 3), spacing=20.0, pore_radius=5.0, throat_radius=2.0,
                                 jitter=0.1, radius_spread=0.2, seed=9)
    return simulate(net, 'y', 1e-3, 2000.0, 1000.0, use_lattice=True, use_inertial=True,
                    tortuosity=1.3, segments=2, verbose=False)


def _assert_same(a, b):
    for name in FIELDS:
        assert getattr(a, name) == getattr(b, name), name
    for method in METHODS:
        assert a.permeability(method) == b.permeability(method), method
        assert a.permeability(method, corrected=True) == b.permeability(method, corrected=True), method


def _tail(w, pressure_field):
    """Common tail up to and including the shared pressure field."""
    w.write_double(3.5e-12)  # total flow rate
    w.write_double(1e-4)
    w.write_double(4e-8)
    for ids in ([1, 2], [7, 8]):
        w.write_int32(len(ids))
        for i in ids:
            w.write_int32(i)
    _write_map(w, pressure_field)


def _write_map(w, values):
    w.write_int32(len(values))
    for k, v in values.items():
        w.write_int32(k)
        w.write_double(v)


PRESSURES = {1: 2000.0, 2: 2000.0, 5: 1500.0, 7: 1000.0, 8: 1000.0}
FLOWS = {1: 1.25e-12, 2: -3.0e-13}


def _v1_bytes(with_tortuosity, timestamp="2020-01-02 03:04:05"):
    w = BinaryWriter()
    w.write_string("PERMEABILITY")
    w.write_int32(1)
    w.write_int32(0)
    w.write_double(1e-3)
    w.write_double(2000.0)
    w.write_double(1000.0)
    w.write_double(0.8)
    w.write_double(800.0)
    if with_tortuosity:
        w.write_double(2.0)
        w.write_double(0.2)
    _tail(w, PRESSURES)
    _write_map(w, FLOWS)
    if timestamp is not None:
        w.write_string(timestamp)
    return w.getvalue()


def _v2_bytes():
    w = BinaryWriter()
    w.write_string("PERMEABILITY")
    w.write_int32(2)
    w.write_int32(2)
    w.write_double(1e-3)
    w.write_double(500.0)
    w.write_double(0.0)
    for flag in (True, True, False):
        w.write_bool(flag)
    for d in (0.5, 0.52, 0.0):
        w.write_double(d)
        w.write_double(d * 1000.0)
    w.write_double(1.25)
    for d in (0.5, 0.52, 0.0):
        w.write_double(d / 1.5625)
    _tail(w, PRESSURES)
    _write_map(w, FLOWS)
    w.write_string("2019-05-06 07:08:09")
    return w.getvalue()


def test_v3_round_trip_bit_for_bit():
    print("\n--- Testing v3 round trip ---")
    result = _simulated()
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "result.dat")
        save_result(result, path)
        loaded = load_result(path)

    _assert_same(result, loaded)
    assert encode_result(loaded) == encode_result(result)
    print(loaded.summary())


def test_v3_empty_method_fields():
    result = simulate(two_pore_network(), 'x', 1e-3, 1000.0, 0.0, verbose=False)
    loaded, version = decode_result(encode_result(result))
    assert version == 3
    assert loaded.lattice_boltzmann_pressure_field == {}
    assert loaded.navier_stokes_pressure_field == {}
    _assert_same(result, loaded)


def test_v1_with_tortuosity():
    result, version = decode_result(_v1_bytes(with_tortuosity=True))
    assert version == 1
    assert result.used_darcy and not result.used_lattice_boltzmann and not result.used_navier_stokes
    assert result.darcy_permeability == 0.8 and result.darcy_permeability_md == 800.0
    assert result.tortuosity == 2.0
    assert result.corrected_darcy_permeability == 0.2
    assert result.kozeny_carman_permeability == 0.0
    assert result.pressure_field == PRESSURES
    assert result.throat_flow_rates == FLOWS
    assert result.timestamp == "2020-01-02 03:04:05"


def test_v1_without_tortuosity_uses_network():
    print("\n--- Testing v1 file without tortuosity ---")
    net = two_pore_network()
    net = PoreNetworkModel(net.pores, net.throats, tortuosity=2.0)
    result, _ = decode_result(_v1_bytes(with_tortuosity=False), network=net)

    assert result.used_darcy
    assert result.tortuosity == 2.0
    assert result.corrected_darcy_permeability == 0.8 / 4.0
    assert result.inlet_pores == (1, 2) and result.outlet_pores == (7, 8)
    assert result.total_flow_rate == 3.5e-12

    # No network: tortuosity 1
    result, _ = decode_result(_v1_bytes(with_tortuosity=False))
    assert result.tortuosity == 1.0
    assert result.corrected_darcy_permeability == 0.8


def _v1_placeholder_bytes():
    """v1 layout carrying the pair, with tortuosity left at its 0.0 default."""
    w = BinaryWriter()
    w.write_string("PERMEABILITY")
    w.write_int32(1)
    w.write_int32(0)
    w.write_double(1e-3)
    w.write_double(2000.0)
    w.write_double(1000.0)
    w.write_double(0.8)
    w.write_double(800.0)
    w.write_double(0.0)
    w.write_double(0.8)
    _tail(w, PRESSURES)
    _write_map(w, FLOWS)
    w.write_string("2020-01-02 03:04:05")
    return w.getvalue()


def test_v1_zero_tortuosity_placeholder():
    print("\n--- Testing v1 file with a zero tortuosity ---")
    result, version = decode_result(_v1_placeholder_bytes())
    assert version == 1
    assert result.tortuosity == 1.0
    assert result.corrected_darcy_permeability == 0.8
    assert result.pressure_field == PRESSURES
    assert result.throat_flow_rates == FLOWS
    assert result.timestamp == "2020-01-02 03:04:05"

    net = two_pore_network()
    net = PoreNetworkModel(net.pores, net.throats, tortuosity=2.0)
    result, _ = decode_result(_v1_placeholder_bytes(), network=net)
    assert result.tortuosity == 2.0
    assert result.corrected_darcy_permeability == 0.8 / 4.0


def test_missing_timestamp():
    result, _ = decode_result(_v1_bytes(with_tortuosity=True, timestamp=None))
    assert result.timestamp == "Unknown"


def test_v2_migration():
    print("\n--- Testing v2 migration ---")
    result, version = decode_result(_v2_bytes())
    assert version == 2
    assert result.flow_axis == FlowAxis.Z
    assert result.used_darcy and result.used_lattice_boltzmann and not result.used_navier_stokes
    # Old middle method lands on the lattice fields
    assert result.lattice_boltzmann_permeability == 0.52
    assert result.corrected_lattice_boltzmann_permeability == 0.52 / 1.5625
    assert result.lattice_boltzmann_pressure_field == PRESSURES
    assert result.navier_stokes_pressure_field == {}
    assert result.kozeny_carman_permeability == 0.0
    assert result.timestamp == "2019-05-06 07:08:09"

    # Re-saving at v3 keeps pressures, flows and corrected values
    again, version = decode_result(encode_result(result))
    assert version == 3
    _assert_same(result, again)


def test_bad_files():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "bad.dat")

        w = BinaryWriter()
        w.write_string("PORENETWORK")
        w.write_int32(3)
        with open(path, 'wb') as f:
            f.write(w.getvalue())
        try:
            load_result(path)
            assert False, "expected FormatError"
        except FormatError:
            pass

        w = BinaryWriter()
        w.write_string("PERMEABILITY")
        w.write_int32(4)
        with open(path, 'wb') as f:
            f.write(w.getvalue())
        try:
            load_result(path)
            assert False, "expected VersionError"
        except VersionError as e:
            assert e.version == 4

    data = encode_result(_simulated())
    try:
        decode_result(data[:len(data) // 2])
        assert False, "expected TruncationError"
    except TruncationError:
        pass


def test_frozen_defaults():
    empty = PermeabilitySimulationResult()
    assert empty.timestamp == "Unknown"
    assert not empty.used_darcy
    assert empty.pressure_field == {}
    assert np.isclose(empty.corrected_navier_stokes_permeability_md, 0.0)


if __name__ == "__main__":
    test_v3_round_trip_bit_for_bit()
    test_v3_empty_method_fields()
    test_v1_with_tortuosity()
    test_v1_without_tortuosity_uses_network()
    test_v1_zero_tortuosity_placeholder()
    test_missing_timestamp()
    test_v2_migration()
    test_bad_files()
    test_frozen_defaults()
