"""Default values used by the configuration classes."""

from typing import Final

DEFAULT_METHOD: Final = "mma/default"
"""Default subproblem solver."""

DEFAULT_MOVE_LIMIT_FRACTION: Final = 0.2
"""Default move limit, as a fraction of the range between the bounds."""

DEFAULT_HEADER_INTERVAL: Final = 10
"""Default number of iterations between headers in the iteration log."""
