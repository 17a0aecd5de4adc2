
import numpy as np

from binary_io import BinaryReader, BinaryWriter
from boundary import FlowAxis
from errors import FormatError, TruncationError, VersionError
from simulation import PermeabilitySimulationResult
from tortuosity import correct_permeability

MAGIC = "PERMEABILITY"
CURRENT_VERSION = 3

# Field layout per file version, in file order.
#   flags:      method flags written as bools (None: Darcy implied)
#   values:     methods with a (Darcy, milli-Darcy) pair
#   corrected:  methods with a corrected Darcy value after the tortuosity
#   fields:     methods with their own pressure field after the shared one
LAYOUTS = {
    1: {'flags': None,
        'values': ('darcy',),
        'corrected': ('darcy',),
        'fields': ()},
    2: {'flags': ('darcy', 'stefan_boltzmann', 'navier_stokes'),
        'values': ('darcy', 'stefan_boltzmann', 'navier_stokes'),
        'corrected': ('darcy', 'stefan_boltzmann', 'navier_stokes'),
        'fields': ()},
    3: {'flags': ('darcy', 'lattice_boltzmann', 'navier_stokes'),
        'values': ('darcy', 'lattice_boltzmann', 'navier_stokes', 'kozeny_carman'),
        'corrected': ('darcy', 'lattice_boltzmann', 'navier_stokes', 'kozeny_carman'),
        'fields': ('lattice_boltzmann', 'navier_stokes')},
}

# Old method names kept only in the file format -> current field names
RENAMED = {'stefan_boltzmann': 'lattice_boltzmann'}


def current_name(method):
    return RENAMED.get(method, method)


def _write_ids(w, ids):
    w.write_int32(len(ids))
    for i in ids:
        w.write_int32(i)


def _write_map(w, values):
    w.write_int32(len(values))
    for key, value in values.items():
        w.write_int32(key)
        w.write_double(value)


def encode_result(result):
    """Serialises a PermeabilitySimulationResult at the current version."""
    layout = LAYOUTS[CURRENT_VERSION]
    w = BinaryWriter()

    w.write_string(MAGIC)
    w.write_int32(CURRENT_VERSION)
    w.write_int32(int(result.flow_axis))
    w.write_double(result.viscosity)
    w.write_double(result.input_pressure)
    w.write_double(result.output_pressure)

    for method in layout['flags']:
        w.write_bool(getattr(result, f'used_{method}'))
    for method in layout['values']:
        w.write_double(result.permeability(method))
        w.write_double(result.permeability(method) * 1000.0)
    w.write_double(result.tortuosity)
    for method in layout['corrected']:
        w.write_double(result.permeability(method, corrected=True))

    w.write_double(result.total_flow_rate)
    w.write_double(result.model_length)
    w.write_double(result.model_area)
    _write_ids(w, result.inlet_pores)
    _write_ids(w, result.outlet_pores)
    _write_map(w, result.pressure_field)
    for method in layout['fields']:
        _write_map(w, getattr(result, f'{method}_pressure_field'))
    _write_map(w, result.throat_flow_rates)

    w.write_string(result.timestamp)
    return w.getvalue()


def save_result(result, path):
    data = encode_result(result)
    with open(path, 'wb') as f:
        f.write(data)
    print(f"Saved permeability results (v{CURRENT_VERSION}) to {path}")


def _read_ids(r):
    n = r.read_int32()
    if n < 0:
        raise FormatError(f"Negative record count {n}")
    return [r.read_int32() for _ in range(n)]


def _read_map(r):
    n = r.read_int32()
    if n < 0:
        raise FormatError(f"Negative record count {n}")
    values = {}
    for _ in range(n):
        key = r.read_int32()
        values[key] = r.read_double()
    return values


def _read_header(r):
    try:
        magic = r.read_string()
    except (TruncationError, FormatError):
        magic = None
    if magic != MAGIC:
        raise FormatError(f"Invalid file format: {magic!r} (expected '{MAGIC}')")

    version = r.read_int32()
    if version not in LAYOUTS:
        raise VersionError(version, sorted(LAYOUTS))
    return version


def _read_common(r, fields):
    """Header scalars after the version."""
    code = r.read_int32()
    try:
        fields['flow_axis'] = FlowAxis(code)
    except ValueError:
        raise FormatError(f"Invalid flow axis code {code}")
    fields['viscosity'] = r.read_double()
    fields['input_pressure'] = r.read_double()
    fields['output_pressure'] = r.read_double()


def _read_method_block(r, layout, fields, tortuosity_optional=False):
    """
    Flags, raw values, tortuosity and corrected values. Old method names are
    mapped onto the current fields through RENAMED.
    Returns False when the optional tortuosity pair was absent.
    """
    if layout['flags'] is None:
        fields['used_darcy'] = True
    else:
        for method in layout['flags']:
            fields[f'used_{current_name(method)}'] = r.read_bool()

    raw = {}
    for method in layout['values']:
        raw[current_name(method)] = r.read_double()
        r.read_double() # milli-Darcy, always 1000x the Darcy value
    fields['permeabilities'] = raw

    if tortuosity_optional and r.remaining() < 16:
        return False
    fields['tortuosity'] = r.read_double()
    fields['corrected_permeabilities'] = {current_name(m): r.read_double() for m in layout['corrected']}
    return True


def _read_tail(r, layout, fields, strict=False):
    """
    Totals, boundary ids, pressure and flow maps, then the optional timestamp.
    strict: an unreadable timestamp raises instead of falling back to 'Unknown'.
    """
    fields['total_flow_rate'] = r.read_double()
    fields['model_length'] = r.read_double()
    fields['model_area'] = r.read_double()
    fields['inlet_pores'] = _read_ids(r)
    fields['outlet_pores'] = _read_ids(r)
    fields['pressure_field'] = _read_map(r)
    for method in layout['fields']:
        fields[f'{current_name(method)}_pressure_field'] = _read_map(r)
    fields['throat_flow_rates'] = _read_map(r)

    timestamp = "Unknown"
    if r.remaining() > 0 and strict:
        timestamp = r.read_string()
    elif r.remaining() > 0:
        try:
            timestamp = r.read_string()
        except (TruncationError, FormatError) as e:
            print(f"  Warning: unreadable timestamp ({e}), using 'Unknown'")
    fields['timestamp'] = timestamp


def _fallback_tortuosity(network):
    if network is not None:
        return network.tortuosity
    return 1.0


def _migrate(version, fields, network):
    """Fills the fields an older layout does not carry."""
    if version == 1:
        tau = fields.get('tortuosity')
        if tau is None or not np.isfinite(tau) or tau < 1.0:
            # Absent, or the 0.0 placeholder of runs made without a tortuosity
            fallback = _fallback_tortuosity(network)
            print(f"  Note: v1 file without a usable tortuosity ({tau}), using {fallback:.4f}")
            fields['tortuosity'] = fallback
            fields['corrected_permeabilities'] = {
                'darcy': correct_permeability(fields['permeabilities']['darcy'], fallback)}

    if version == 2:
        # No per-method pressure fields: the shared field stands in for every method that ran
        if fields.get('used_lattice_boltzmann'):
            fields['lattice_boltzmann_pressure_field'] = dict(fields['pressure_field'])
        if fields.get('used_navier_stokes'):
            fields['navier_stokes_pressure_field'] = dict(fields['pressure_field'])
    return fields


def _decode_v1(data, network):
    """
    v1 may or may not carry the (tortuosity, corrected) pair after the Darcy
    values. The layout with the pair is kept when its tail parses and ends
    exactly at the end of the file; otherwise the file is parsed without it.
    """
    layout = LAYOUTS[1]
    try:
        r = BinaryReader(data)
        _read_header(r)
        fields = {}
        _read_common(r, fields)
        if _read_method_block(r, layout, fields, tortuosity_optional=True):
            _read_tail(r, layout, fields, strict=True)
            if r.remaining() == 0:
                return fields
    except (TruncationError, FormatError):
        pass

    r = BinaryReader(data)
    _read_header(r)
    fields = {}
    _read_common(r, fields)
    fields['used_darcy'] = True
    fields['permeabilities'] = {'darcy': r.read_double()}
    r.read_double()
    _read_tail(r, layout, fields)
    return fields


def decode_result(data, network=None):
    r = BinaryReader(data)
    version = _read_header(r)

    if version == 1:
        fields = _decode_v1(data, network)
    else:
        layout = LAYOUTS[version]
        fields = {}
        _read_common(r, fields)
        _read_method_block(r, layout, fields)
        _read_tail(r, layout, fields)

    fields = _migrate(version, fields, network)
    return PermeabilitySimulationResult(**fields), version


def load_result(path, network=None):
    """
    Loads a permeability result file of version 1, 2 or 3.

    network: used only for v1 files written without a tortuosity value
    (its tortuosity is applied; 1.0 without a network).

    Magic mismatch raises FormatError, unknown versions VersionError and a
    file ending inside a record TruncationError.
    """
    with open(path, 'rb') as f:
        data = f.read()
    result, version = decode_result(data, network=network)
    print(f"Loaded permeability results (v{version}) from {path}, saved {result.timestamp}")
    return result
