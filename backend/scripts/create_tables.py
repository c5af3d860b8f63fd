import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from settings import settings
from schema import create_schema

print('Connecting to', settings.db_url)
create_schema(settings.db_url)
print('Tables ready: raw_events, normalized_events, failed_events, processing_log')
