"""
Brightness contour & edge analysis toolkit.

Derives brightness-level contour lines, Canny edge maps and a low/high
frequency split from a raster image and composites them under a layer stack.
"""

__version__ = "1.0.0"
