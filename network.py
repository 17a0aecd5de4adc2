
import numpy as np
import pandas as pd

MICRON = 1e-6 # geometry is stored in micrometres, solvers work in metres

PORE_COLUMNS = ['id', 'x', 'y', 'z', 'radius', 'volume', 'area', 'connection_count']
THROAT_COLUMNS = ['id', 'pore1', 'pore2', 'radius', 'length', 'volume']


def _as_table(data, columns, name):
    if isinstance(data, pd.DataFrame):
        df = data.copy()
    else:
        rows = list(data)
        if len(rows) > 0 and not isinstance(rows[0], dict):
            # Tuples in column order; connection_count may be omitted for pores
            rows = [dict(zip(columns, r)) for r in rows]
        df = pd.DataFrame(rows, columns=columns)

    if 'connection_count' in columns:
        # Recomputed later; only needs to survive the integer cast
        if 'connection_count' not in df.columns:
            df['connection_count'] = 0
        df['connection_count'] = df['connection_count'].fillna(0)

    missing = set(columns) - set(df.columns)
    if missing:
        raise ValueError(f"{name} table is missing columns: {sorted(missing)}")
    return df[columns].reset_index(drop=True)


class PoreNetworkModel:
    """
    Pore-throat graph extracted from a segmented scan.

    pores:   DataFrame with columns id, x, y, z, radius, volume, area (µm based)
    throats: DataFrame with columns id, pore1, pore2, radius, length, volume
    pixel_size: voxel edge length of the source scan in metres

    connection_count is always recomputed from the throat table. The tables
    are copied on construction; solvers only ever read them.
    """

    def __init__(self, pores, throats, pixel_size=1e-6, porosity=0.0, tortuosity=1.0):
        pores = _as_table(pores, PORE_COLUMNS, "Pore")
        throats = _as_table(throats, THROAT_COLUMNS, "Throat")

        pores = pores.astype({'id': np.int64, 'x': float, 'y': float, 'z': float,
                              'radius': float, 'volume': float, 'area': float,
                              'connection_count': np.int64})
        throats = throats.astype({'id': np.int64, 'pore1': np.int64, 'pore2': np.int64,
                                  'radius': float, 'length': float, 'volume': float})

        if pores['id'].duplicated().any():
            dup = pores.loc[pores['id'].duplicated(), 'id'].tolist()
            raise ValueError(f"Duplicate pore ids: {dup[:10]}")
        if throats['id'].duplicated().any():
            dup = throats.loc[throats['id'].duplicated(), 'id'].tolist()
            raise ValueError(f"Duplicate throat ids: {dup[:10]}")

        known = set(pores['id'].tolist())
        dangling = ~(throats['pore1'].isin(known) & throats['pore2'].isin(known))
        if dangling.any():
            raise ValueError(f"Throats reference unknown pores: {throats.loc[dangling, 'id'].tolist()[:10]}")
        if (throats['pore1'] == throats['pore2']).any():
            raise ValueError("Throats must connect two distinct pores")

        porosity = float(porosity)
        tortuosity = float(tortuosity)
        if not 0.0 <= porosity <= 1.0:
            raise ValueError(f"Porosity must be within [0, 1], got {porosity}")
        if not np.isfinite(tortuosity) or tortuosity < 1.0:
            raise ValueError(f"Tortuosity must be finite and >= 1, got {tortuosity}")

        # Each throat end counts once towards its pore
        counts = pd.concat([throats['pore1'], throats['pore2']]).value_counts()
        pores['connection_count'] = pores['id'].map(counts).fillna(0).astype(np.int64)

        self._pores = pores
        self._throats = throats
        self.pixel_size = float(pixel_size)
        self.porosity = porosity
        self.tortuosity = tortuosity
        self._index = {pid: i for i, pid in enumerate(pores['id'].tolist())}

    @classmethod
    def from_records(cls, pores, throats, **kwargs):
        """Builds a model from lists of dicts or column-ordered tuples."""
        return cls(pores, throats, **kwargs)

    @property
    def pores(self):
        return self._pores.copy()

    @property
    def throats(self):
        return self._throats.copy()

    @property
    def n_pores(self):
        return len(self._pores)

    @property
    def n_throats(self):
        return len(self._throats)

    @property
    def total_pore_volume(self):
        return float(self._pores['volume'].sum())

    @property
    def total_throat_volume(self):
        return float(self._throats['volume'].sum())

    @property
    def pore_ids(self):
        return self._pores['id'].to_numpy()

    @property
    def throat_ids(self):
        return self._throats['id'].to_numpy()

    def pore_index(self, pore_id):
        return self._index[pore_id]

    def centers(self):
        """(n_pores, 3) array of pore centres in µm."""
        return self._pores[['x', 'y', 'z']].to_numpy()

    def axis_coordinates(self, axis):
        return self._pores[['x', 'y', 'z'][int(axis)]].to_numpy()

    def pore_radii(self):
        return self._pores['radius'].to_numpy()

    def throat_endpoints(self):
        """Row indices (not ids) of both throat ends, as two int arrays."""
        i1 = self._throats['pore1'].map(self._index).to_numpy(dtype=np.int64)
        i2 = self._throats['pore2'].map(self._index).to_numpy(dtype=np.int64)
        return i1, i2

    def throat_radii(self):
        return self._throats['radius'].to_numpy()

    def throat_lengths(self):
        return self._throats['length'].to_numpy()

    def bounding_box(self):
        """
        Extent of the pore spheres (centre ± radius) along x, y, z in µm.
        Returns ((xmin, xmax), (ymin, ymax), (zmin, zmax)).
        """
        c = self.centers()
        r = self.pore_radii()[:, np.newaxis]
        lo = (c - r).min(axis=0)
        hi = (c + r).max(axis=0)
        return tuple((lo[i], hi[i]) for i in range(3))

    def __repr__(self):
        return (f"PoreNetworkModel({self.n_pores} pores, {self.n_throats} throats, "
                f"porosity={self.porosity:.4f}, tortuosity={self.tortuosity:.3f})")
