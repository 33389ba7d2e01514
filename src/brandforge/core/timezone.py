"""UTC timezone enforcement.

Job enqueue times and generation records are compared across processes,
so the whole application runs in UTC.
"""

import os

os.environ["TZ"] = "UTC"
