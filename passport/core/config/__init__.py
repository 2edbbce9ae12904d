"""
Configuration subsystem.

- **config.py**: static settings from environment variables (.env support)
- **manager.py**: tunable values from YAML defaults with runtime overrides

Only the static layer is re-exported here; the logging subsystem depends on
it, and ConfigManager depends on logging. Import the manager explicitly:

```python
from passport.core.config import Config
from passport.core.config.manager import ConfigManager

db_url = Config.DATABASE_URL
xp_per_level = ConfigManager.get("gamification.xp_per_level", 1000)
```
"""

from passport.core.config.config import Config, Environment

__all__ = [
    "Config",
    "Environment",
]
