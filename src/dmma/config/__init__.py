"""The `dmma.config` module provides the configuration of the optimizer.

The configuration classes are built using
[`pydantic`](https://docs.pydantic.dev/), which provides robust data validation
and parsing capabilities. Configuration objects are typically created from
dictionaries of configuration values using the `model_validate` method provided
by `pydantic`:

```py
from dmma.config import OptimizerConfig

config = OptimizerConfig.model_validate({"move_limit_fraction": 0.1})
```

Configuration objects are immutable after creation.
"""

from ._optimizer_config import OptimizerConfig

__all__ = [
    "OptimizerConfig",
]
