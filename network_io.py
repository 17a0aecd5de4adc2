import numpy as np
import pandas as pd

from binary_io import BinaryReader, BinaryWriter
from errors import FormatError, TruncationError, VersionError
from network import PORE_COLUMNS, THROAT_COLUMNS, PoreNetworkModel

MAGIC = "PORENETWORK"
VERSION = 1
MAX_PORES = 1_000_000
MAX_THROATS = 10_000_000
INT32_RANGE = (np.iinfo(np.int32).min, np.iinfo(np.int32).max) # id fields are stored as int32

PORE_DTYPE = np.dtype([('id', '<i4'), ('x', '<f8'), ('y', '<f8'), ('z', '<f8'), ('radius', '<f8'),
                       ('volume', '<f8'), ('area', '<f8'), ('connection_count', '<i4')])
THROAT_DTYPE = np.dtype([('id', '<i4'), ('pore1', '<i4'), ('pore2', '<i4'),
                         ('radius', '<f8'), ('length', '<f8'), ('volume', '<f8')])

# Headerless record layouts used by the raw recovery path
RAW_PORE_DTYPE = np.dtype([('x', '<f8'), ('y', '<f8'), ('z', '<f8'), ('radius', '<f8'),
                           ('volume', '<f8'), ('area', '<f8'), ('unused', '<i4')])
RAW_THROAT_DTYPE = np.dtype([('pore1', '<i4'), ('pore2', '<i4'),
                             ('radius', '<f8'), ('length', '<f8'), ('volume', '<f8')])


class RawLayout:
    """Caller-supplied counts and pixel size for reading a headerless network dump."""

    def __init__(self, pore_count, throat_count, pixel_size):
        if pore_count <= 0 or throat_count < 0:
            raise ValueError(f"Invalid raw layout: {pore_count} pores, {throat_count} throats")
        if pixel_size <= 0:
            raise ValueError(f"Pixel size must be positive, got {pixel_size}")
        self.pore_count = int(pore_count)
        self.throat_count = int(throat_count)
        self.pixel_size = float(pixel_size)

    def __repr__(self):
        return f"RawLayout(pores={self.pore_count}, throats={self.throat_count}, pixel_size={self.pixel_size})"


def _check_int32(table, columns, name):
    for col in columns:
        values = table[col].to_numpy()
        if len(values) > 0 and (values.min() < INT32_RANGE[0] or values.max() > INT32_RANGE[1]):
            raise ValueError(f"{name} column '{col}' does not fit the 32-bit file field "
                             f"(range {values.min()}..{values.max()})")


def encode_network(network):
    """Serialises a PoreNetworkModel into the versioned binary layout."""
    pores = network.pores
    throats = network.throats
    _check_int32(pores, ['id', 'connection_count'], "Pore")
    _check_int32(throats, ['id', 'pore1', 'pore2'], "Throat")

    pore_records = np.zeros(len(pores), dtype=PORE_DTYPE)
    for col in PORE_COLUMNS:
        pore_records[col] = pores[col].to_numpy()
    throat_records = np.zeros(len(throats), dtype=THROAT_DTYPE)
    for col in THROAT_COLUMNS:
        throat_records[col] = throats[col].to_numpy()

    w = BinaryWriter()
    w.write_string(MAGIC)
    w.write_int32(VERSION)
    w.write_int32(len(pores))
    w.write_int32(len(throats))
    w.write_double(network.pixel_size)
    w.write_double(network.porosity)
    w.write_double(network.tortuosity)
    w.write_records(pore_records)
    w.write_records(throat_records)
    return w.getvalue()


def save_network(network, path):
    data = encode_network(network)
    with open(path, 'wb') as f:
        f.write(data)
    print(f"Saved network ({network.n_pores} pores, {network.n_throats} throats) to {path}")


def _read_magic(reader):
    """
    Reads the length-prefixed magic token. A single stray control byte in
    front of it (seen in files re-saved by older tools) is skipped.
    """
    start = reader.position
    try:
        token = reader.read_string()
        if token == MAGIC:
            return True
    except (TruncationError, FormatError):
        pass

    reader.position = start
    # Bare token without a length prefix
    raw = MAGIC.encode('ascii')
    if reader.peek(len(raw)) == raw:
        reader.skip(len(raw))
        return True

    try:
        first = reader.peek_byte()
    except TruncationError:
        return False
    if first < 0x20:
        reader.skip(1)
        after = reader.position
        if reader.peek(len(raw)) == raw:
            reader.skip(len(raw))
            print("  Warning: skipped a control-character prefix before the network header.")
            return True
        try:
            if reader.read_string() == MAGIC:
                print("  Warning: skipped a control-character prefix before the network header.")
                return True
        except (TruncationError, FormatError):
            pass
        reader.position = after
    return False


def _clean_scalars(porosity, tortuosity):
    if not np.isfinite(porosity) or not 0.0 <= porosity <= 1.0:
        clipped = float(np.clip(np.nan_to_num(porosity), 0.0, 1.0))
        print(f"  Warning: porosity {porosity} out of range, clipped to {clipped}")
        porosity = clipped
    if not np.isfinite(tortuosity) or tortuosity < 1.0:
        print(f"  Warning: invalid tortuosity {tortuosity}, using 1.0")
        tortuosity = 1.0
    return porosity, tortuosity


def _drop_dangling(pores, throats):
    known = set(pores['id'].tolist())
    keep = throats['pore1'].isin(known) & throats['pore2'].isin(known) & (throats['pore1'] != throats['pore2'])
    n_dropped = int((~keep).sum())
    if n_dropped > 0:
        print(f"  Warning: dropped {n_dropped} throats referencing missing pores.")
    return throats[keep].reset_index(drop=True)


def decode_network(data, raw_layout=None):
    """
    Parses the binary network layout. See load_network for the recovery rules.
    """
    reader = BinaryReader(data)

    # 1. Header
    if not _read_magic(reader):
        if raw_layout is not None:
            print("  Magic token not found, re-reading as raw pore/throat records...")
            return decode_network_raw(data, raw_layout)
        raise FormatError(f"Not a pore network file (expected '{MAGIC}' header)", recoverable=True)

    try:
        version = reader.read_int32()
        if version != VERSION:
            raise VersionError(version, (VERSION,))
        pore_count = reader.read_int32()
        throat_count = reader.read_int32()
        pixel_size = reader.read_double()
        porosity = reader.read_double()
        tortuosity = reader.read_double()
    except TruncationError as e:
        raise FormatError(f"Network header too short: {e}")

    if not 0 < pore_count <= MAX_PORES or not 0 <= throat_count <= MAX_THROATS:
        raise FormatError(f"Implausible counts in network header: {pore_count} pores, {throat_count} throats")

    porosity, tortuosity = _clean_scalars(porosity, tortuosity)

    # 2. Records; a short file keeps what was fully written
    pore_records, complete = reader.read_records(PORE_DTYPE, pore_count)
    throat_records = np.zeros(0, dtype=THROAT_DTYPE)
    if complete:
        throat_records, complete = reader.read_records(THROAT_DTYPE, throat_count)

    if not complete:
        shortfall = TruncationError("Network file ends mid-list",
                                    records_read=len(pore_records) + len(throat_records),
                                    records_expected=pore_count + throat_count)
        print(f"  Warning: {shortfall} - loaded {len(pore_records)}/{pore_count} pores, "
              f"{len(throat_records)}/{throat_count} throats.")

    pores = pd.DataFrame({col: pore_records[col] for col in PORE_COLUMNS})
    throats = pd.DataFrame({col: throat_records[col] for col in THROAT_COLUMNS})
    throats = _drop_dangling(pores, throats)

    return PoreNetworkModel(pores, throats, pixel_size=pixel_size, porosity=porosity, tortuosity=tortuosity)


def estimate_box_porosity(pores, throats):
    """Total pore + throat volume over the bounding box of the pore spheres."""
    if len(pores) == 0:
        return 0.0
    lo = [(pores[c] - pores['radius']).min() for c in 'xyz']
    hi = [(pores[c] + pores['radius']).max() for c in 'xyz']
    box = float(np.prod(np.subtract(hi, lo)))
    if box <= 0:
        return 0.0
    void = pores['volume'].sum() + throats['volume'].sum()
    return float(np.clip(void / box, 0.0, 1.0))


def decode_network_raw(data, raw_layout):
    reader = BinaryReader(data)

    pore_records, complete = reader.read_records(RAW_PORE_DTYPE, raw_layout.pore_count)
    throat_records = np.zeros(0, dtype=RAW_THROAT_DTYPE)
    if complete:
        throat_records, complete = reader.read_records(RAW_THROAT_DTYPE, raw_layout.throat_count)
    if not complete:
        print(f"  Warning: raw data ends early - recovered {len(pore_records)}/{raw_layout.pore_count} pores, "
              f"{len(throat_records)}/{raw_layout.throat_count} throats.")
    if len(pore_records) == 0:
        raise FormatError("Raw recovery found no complete pore records")

    pores = pd.DataFrame({col: pore_records[col] for col in ['x', 'y', 'z', 'radius', 'volume', 'area']})
    pores.insert(0, 'id', np.arange(1, len(pores) + 1))
    throats = pd.DataFrame({col: throat_records[col] for col in ['pore1', 'pore2', 'radius', 'length', 'volume']})
    throats.insert(0, 'id', np.arange(1, len(throats) + 1))
    throats = _drop_dangling(pores, throats)

    porosity = estimate_box_porosity(pores, throats)
    print(f"  Raw recovery: {len(pores)} pores, {len(throats)} throats, estimated porosity {porosity:.4f}")
    return PoreNetworkModel(pores, throats, pixel_size=raw_layout.pixel_size, porosity=porosity, tortuosity=1.0)


def load_network(path, raw_layout=None):
    """
    Loads a network file.

    - the header magic may carry one leading control byte
    - a file ending mid-list keeps the complete records read so far
    - magic mismatch raises FormatError(recoverable=True), unless raw_layout
      is given, in which case the file is re-read as headerless records
    - version other than 1 raises VersionError
    """
    with open(path, 'rb') as f:
        data = f.read()
    network = decode_network(data, raw_layout=raw_layout)
    print(f"Loaded network from {path}: {network.n_pores} pores, {network.n_throats} throats")
    return network


def load_network_raw(path, raw_layout):
    with open(path, 'rb') as f:
        data = f.read()
    return decode_network_raw(data, raw_layout)
