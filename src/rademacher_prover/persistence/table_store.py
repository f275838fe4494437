"""
Bound Table Persistence

CSV layout: the first line holds `coef_gran,thresh_gran,max_bound`, then
one line per coefficient row with 2 * max_bound comma-separated values.
Values are written with 17 significant digits so a reload is exact.

When the table knows how it was built, a second line
`# config {...}` records its TableConfig as canonical JSON. Readers that
skip `#` lines see the plain layout.
"""

from pathlib import Path
from typing import Optional, Union
import json

import numpy as np

from ..bounds.bound_table import BoundTable, TableConfig
from ..exceptions import InvariantViolation, MalformedTable
from ..receipts import canonical_dumps


DEFAULT_TABLE_PATH = "bounder.csv"

CONFIG_PREFIX = "# config "


def save_table(table: BoundTable, path: Union[str, Path] = DEFAULT_TABLE_PATH) -> Path:
    """Write the table; returns the path written."""
    path = Path(path)
    header = f"{table.coef_gran},{table.thresh_gran},{table.max_bound}"
    if table.config is not None:
        header += "\n" + CONFIG_PREFIX + canonical_dumps(table.config.to_canonical())
    np.savetxt(path, table.bounds, delimiter=",", header=header, comments="", fmt="%.17g")
    return path


def _parse_config(path: Path, line: str) -> TableConfig:
    try:
        return TableConfig(**json.loads(line[len(CONFIG_PREFIX):]))
    except (ValueError, TypeError, InvariantViolation) as e:
        raise MalformedTable(f"{path}: bad config line: {e}")


def load_table(path: Union[str, Path] = DEFAULT_TABLE_PATH) -> BoundTable:
    """
    Read a table written by save_table.

    Raises:
        MalformedTable: if the header, the config line or the shape is inconsistent
    """
    path = Path(path)
    config: Optional[TableConfig] = None
    with open(path, 'r') as f:
        header = f.readline().strip()
        try:
            coef_gran, thresh_gran, max_bound = (int(v) for v in header.split(","))
        except ValueError:
            raise MalformedTable(f"{path}: header must be 'coef_gran,thresh_gran,max_bound', got {header!r}")

        position = f.tell()
        line = f.readline()
        if line.startswith(CONFIG_PREFIX):
            config = _parse_config(path, line.strip())
        else:
            f.seek(position)

        try:
            bounds = np.loadtxt(f, delimiter=",", ndmin=2)
        except ValueError as e:
            raise MalformedTable(f"{path}: {e}")

    expected = (coef_gran, 2 * max_bound)
    if bounds.shape != expected:
        raise MalformedTable(f"{path}: table has shape {bounds.shape}, header says {expected}")
    if config is not None and (config.coef_gran, config.thresh_gran, config.max_bound) != (
            coef_gran, thresh_gran, max_bound):
        raise MalformedTable(f"{path}: config line does not match the header {header!r}")
    try:
        return BoundTable(bounds, coef_gran, thresh_gran, max_bound, config=config)
    except InvariantViolation as e:
        raise MalformedTable(f"{path}: {e}")
