"""Rendering of plot lines to SVG or PNG images using matplotlib."""
import io
import logging
from typing import Sequence

from matplotlib.figure import Figure
from matplotlib.ticker import FuncFormatter, MaxNLocator

from tsgraph.config import RenderConfig
from tsgraph.graph import RenderLine
from tsgraph.series import from_ns

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "svg": "image/svg+xml",
    "png": "image/png",
}


def format_timestamp(ns: float) -> str:
    """Format a nanosecond epoch value as an RFC 822 date."""
    return from_ns(int(ns)).strftime("%d %b %y %H:%M UTC")


def render(lines: Sequence[RenderLine], config: RenderConfig = None) -> bytes:
    """
    Draw plot lines into an image.

    Args:
        lines: Lines to draw, in legend order
        config: Image size, resolution, format and palette

    Returns:
        Encoded image in the configured format
    """
    config = config or RenderConfig()

    fig = Figure(figsize=(config.width / config.dpi, config.height / config.dpi), dpi=config.dpi)
    ax = fig.add_subplot(1, 1, 1)
    ax.grid(True, linestyle=":", linewidth=0.5)

    palette = config.palette
    for line in lines:
        xs = [x for x, _ in line.points]
        ys = [y for _, y in line.points]
        ax.plot(xs, ys, color=palette[line.color_index % len(palette)],
                linewidth=1.0, label=line.label)

    ax.xaxis.set_major_locator(MaxNLocator(nbins=4))
    ax.xaxis.set_major_formatter(FuncFormatter(lambda value, _pos: format_timestamp(value)))
    ax.tick_params(labelsize=6)
    if lines:
        ax.legend(loc="upper left", fontsize=6, frameon=False)

    buf = io.BytesIO()
    fig.savefig(buf, format=config.format)
    logger.debug(f"Rendered {len(lines)} line(s) as {config.format}")
    return buf.getvalue()
