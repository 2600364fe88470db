"""Chart rendering: a :class:`ChartSpec` in, PNG bytes out.

A new ``Figure`` is created for every call; nothing is shared between
renders, so concurrent requests can render from worker threads.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from matplotlib.figure import Figure

_DPI = 100
_EXTRA_AXIS_OFFSET = 0.08


@dataclass(frozen=True)
class LineSpec:
    name: str
    values: Sequence[Optional[float]]
    axis: int = 0
    style: str = "-"
    color: Optional[str] = None


@dataclass(frozen=True)
class ChartSpec:
    labels: Sequence[str]
    lines: Sequence[LineSpec]
    axes: Sequence[str] = field(default_factory=lambda: [""])
    width: int = 950
    height: int = 300
    title: str = ""


def _plottable(values: Sequence[Optional[float]]) -> List[float]:
    return [math.nan if value is None else float(value) for value in values]


def render(spec: ChartSpec) -> bytes:
    figure = Figure(figsize=(spec.width / _DPI, spec.height / _DPI), dpi=_DPI, facecolor="white")
    host = figure.add_subplot()
    axes = [host]
    for index in range(1, len(spec.axes)):
        twin = host.twinx()
        if index > 1:
            twin.spines["right"].set_position(("axes", 1 + _EXTRA_AXIS_OFFSET * (index - 1)))
        axes.append(twin)

    for axis, title in zip(axes, spec.axes):
        axis.set_ylabel(title, fontsize=8)
        axis.tick_params(labelsize=7)

    positions = range(len(spec.labels))
    for line in spec.lines:
        axis = axes[line.axis] if line.axis < len(axes) else host
        axis.plot(
            positions[: len(line.values)],
            _plottable(line.values),
            linestyle=line.style,
            linewidth=0.8,
            color=line.color,
            label=line.name,
        )

    if spec.labels:
        last = len(spec.labels) - 1
        host.set_xticks([0, last] if last else [0])
        host.set_xticklabels([spec.labels[0], spec.labels[last]] if last else [spec.labels[0]])
    if spec.title:
        host.set_title(spec.title, fontsize=9)

    handles, names = [], []
    for axis in axes:
        axis_handles, axis_names = axis.get_legend_handles_labels()
        handles.extend(axis_handles)
        names.extend(axis_names)
    if handles:
        host.legend(handles, names, loc="upper left", fontsize=6, ncol=4, frameon=False)

    buffer = io.BytesIO()
    figure.savefig(buffer, format="png", dpi=_DPI)
    return buffer.getvalue()
