"""Sample the raster stack at point locations and assemble the training table."""

import logging
import os

import numpy as np
import pandas as pd

from anchordrag.raster import RasterStack
from anchordrag.sampling import PointSet

logger = logging.getLogger(__name__)

LABEL_COLUMN = "drag"
COORD_COLUMNS = ["x", "y"]


def cell_indices(stack: RasterStack, points: PointSet):
    """Row/column of the cell enclosing each point; -1 where outside the grid."""
    cols, rows = ~stack.transform * (points.x, points.y)
    rows = np.floor(np.asarray(rows, dtype=np.float64)).astype(np.int64)
    cols = np.floor(np.asarray(cols, dtype=np.float64)).astype(np.int64)
    height, width = stack.shape
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    rows[~inside] = -1
    cols[~inside] = -1
    return rows, cols, inside


def extract_values(stack: RasterStack, points: PointSet) -> pd.DataFrame:
    """One row per point: coordinates plus the enclosing cell value of each layer."""
    rows, cols, inside = cell_indices(stack, points)
    values = np.full((len(points), len(stack)), np.nan, dtype=np.float64)
    cube = stack.array()
    values[inside] = cube[:, rows[inside], cols[inside]].T
    frame = pd.DataFrame(values, columns=stack.names)
    frame.insert(0, "y", points.y)
    frame.insert(0, "x", points.x)
    return frame


def build_training_table(stack: RasterStack, presence: PointSet, background: PointSet) -> pd.DataFrame:
    """Labelled presence/background rows with incomplete rows dropped."""
    parts = []
    for points in (presence, background):
        frame = extract_values(stack, points)
        frame[LABEL_COLUMN] = points.label
        complete = frame[stack.names].notna().all(axis=1)
        dropped = int((~complete).sum())
        logger.info(
            f"[build_training_table] {points.kind}: {int(complete.sum())} rows kept, "
            f"{dropped} dropped for missing predictors"
        )
        parts.append(frame[complete])
    table = pd.concat(parts, ignore_index=True)
    table[LABEL_COLUMN] = table[LABEL_COLUMN].astype(np.int64)
    return table


def predictor_columns(table: pd.DataFrame):
    """Table columns other than the coordinates and the label."""
    return [c for c in table.columns if c not in COORD_COLUMNS and c != LABEL_COLUMN]


def write_training_table(table: pd.DataFrame, path: str) -> None:
    """Delimited text with predictor columns and the label, no coordinates."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    columns = predictor_columns(table) + [LABEL_COLUMN]
    table[columns].to_csv(path, index=False)
    logger.info(f"[write_training_table] {len(table)} rows written to {path}")
