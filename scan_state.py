from database import STATE_TABLE

SCAN_COMPLETED_KEY = 'fetched'


class ScanState:
    """Persisted "schema scan already ran" flag"""

    def __init__(self, executor, key=SCAN_COMPLETED_KEY):
        self.executor = executor
        self.key = key

    def read(self):
        value = self.executor.scalar(f'SELECT state_value FROM {STATE_TABLE} WHERE state_key = ?', (self.key,))
        return value == 1

    def write(self, completed):
        self.executor.execute(
            f'''INSERT INTO {STATE_TABLE} (state_key, state_value) VALUES (?, ?)
                ON CONFLICT (state_key) DO UPDATE SET state_value = excluded.state_value''',
            (self.key, 1 if completed else 0)
        )
