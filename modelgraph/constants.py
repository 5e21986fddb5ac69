"""
Shared constants for the model-graph engine.

Geometry values are canvas pixels. They are shared by the layout index,
the handle resolver and the copy/paste logic, and mirror what the editor
front end renders. Keep them in sync!
"""

# Name of the protected default root container
GLOBAL_CONTAINER_NAME = "Global"

# Root-level grid for nodes that have no stored position
GRID_COLUMNS = 4
GRID_ORIGIN_X = 120
GRID_ORIGIN_Y = 80
GRID_STEP_X = 220
GRID_STEP_Y = 160

# Sub-grid for children, relative to the parent's top-left corner
CHILD_GRID_COLUMNS = 3
CHILD_OFFSET_X = 24
CHILD_OFFSET_Y = 48
CHILD_STEP_X = 190
CHILD_STEP_Y = 90

# Fixed component size and default container size
COMPONENT_WIDTH = 170
COMPONENT_HEIGHT = 56
CONTAINER_WIDTH = 420
CONTAINER_HEIGHT = 280

# Connection anchors: 3 per side, ratios along the side
HANDLE_SIDES = ("top", "right", "bottom", "left")
HANDLE_RATIOS = (0.2, 0.5, 0.8)
DEFAULT_SOURCE_HANDLE = "right-50"
DEFAULT_TARGET_HANDLE = "left-50"

# Copy/paste
COPY_NAME_SUFFIX = " Copy"
PASTE_OFFSET_X = 40
PASTE_OFFSET_Y = 40

# Name of the data object generated by a direct connect gesture
AUTO_FLOW_NAME_TEMPLATE = "{source} --> {target}"

# Security ratings
RATING_MIN = 1
RATING_MAX = 10
DEFAULT_RATING = 5

# Savepoints
SNAPSHOT_VERSION = 1
MAX_SNAPSHOT_TITLE_LENGTH = 120
MAX_SNAPSHOT_CHARS = 2_000_000
