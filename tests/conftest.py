import os

# keep the app module from creating an on-disk database at import time
os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite+pysqlite:///:memory:")
