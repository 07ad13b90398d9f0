"""Main settings file, assembled from components with django-split-settings.

Every component lives in ``server/settings/components/`` and reads its
values through ``config``, so the process environment (or ``config/.env``)
is the only place deployments change anything.
"""

from split_settings.tools import include, optional

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/ingestion.py',
    # Developer overrides, never committed:
    optional('components/local.py'),
)
